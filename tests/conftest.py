import ctypes
import os
import threading
import time

import pytest

import sierra_native

# Two-lead recording used by most tests: 500 samples per lead at 500Hz
LEAD_I = [(i % 50) - 25 for i in range(500)]
LEAD_II = [400 - (i % 80) * 10 for i in range(500)]
SAMPLE_RECORDING = ("1.04", [("I", LEAD_I, 1000), ("II", LEAD_II, 1000)])


class FakeSierraLibrary:
    """
    Stand-in for libsierraecg.

    Fills real EcgStruct instances from ``recordings`` (keyed by file basename)
    and counts every lifecycle call. Files it does not know fail to parse.
    Sample buffers are overwritten on free so that anything still pointing at
    them afterwards shows up as garbage.
    """

    def __init__(self, recordings=None, init_status=0, valid_override=None, read_delay=0.0):
        self.recordings = recordings or {}
        self.init_status = init_status
        self.valid_override = valid_override
        self.read_delay = read_delay
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._state_lock = threading.Lock()
        self._buffers = {}

    def count(self, name):
        return self.calls.count(name)

    def init(self):
        self.calls.append("init")
        if self.init_status == 0:
            with self._state_lock:
                self.active += 1
                self.max_active = max(self.max_active, self.active)
        return self.init_status

    def read(self, path, ecg):
        self.calls.append("read")
        if self.read_delay:
            time.sleep(self.read_delay)

        key = os.path.basename(os.fspath(path))
        if key not in self.recordings:
            return 1

        version, leads = self.recordings[key]
        ecg.version = version.encode()
        keep = []
        for i, (name, samples, duration) in enumerate(leads):
            array = (ctypes.c_short * len(samples))(*samples)
            name_bytes = name.encode()
            keep.extend([array, name_bytes])
            slot = ecg.leads[i]
            slot.name = name_bytes
            slot.samples = ctypes.cast(array, ctypes.POINTER(ctypes.c_short))
            slot.count = len(samples)
            slot.duration = duration
        ecg.valid = len(leads) if self.valid_override is None else self.valid_override
        self._buffers[ctypes.addressof(ecg)] = keep
        return 0

    def free(self, ecg):
        self.calls.append("free")
        for obj in self._buffers.pop(ctypes.addressof(ecg)):
            if not isinstance(obj, bytes):
                ctypes.memset(obj, 0x7F, ctypes.sizeof(obj))
        for slot in ecg.leads:
            slot.samples = None
            slot.count = 0
        ecg.valid = 0

    def cleanup(self):
        self.calls.append("cleanup")
        with self._state_lock:
            self.active -= 1

    @property
    def balanced(self):
        """Every successful init was matched by exactly one cleanup."""
        successful_inits = self.count("init") if self.init_status == 0 else 0
        return successful_inits == self.count("cleanup") and self.active == 0


@pytest.fixture
def sample_dir(tmp_path):
    """Directory holding sample.xml (valid) and broken.xml (unparseable)."""
    (tmp_path / "sample.xml").write_text("<restingecgdata/>")
    (tmp_path / "broken.xml").write_text("not xml at all")
    return tmp_path


@pytest.fixture
def library():
    return FakeSierraLibrary({"sample.xml": SAMPLE_RECORDING})


@pytest.fixture(autouse=True)
def no_native_library(monkeypatch):
    """Tests must never reach a real libsierraecg by accident."""
    def fail(path=None):
        raise OSError("libsierraecg is not available in tests")

    monkeypatch.setattr(sierra_native, "load_library", fail)


@pytest.fixture
def lead_i():
    return list(LEAD_I)


@pytest.fixture
def lead_ii():
    return list(LEAD_II)


@pytest.fixture
def sample_recording():
    return SAMPLE_RECORDING


@pytest.fixture
def make_library():
    """Build a FakeSierraLibrary, e.g. make_library({"a.xml": recording}, init_status=1)."""
    return FakeSierraLibrary


# captured before no_native_library swaps it out
_load_library = sierra_native.load_library


@pytest.fixture
def real_load_library(monkeypatch):
    """The unpatched sierra_native.load_library with an empty instance cache."""
    monkeypatch.setattr(sierra_native, "_library", None)
    return _load_library
