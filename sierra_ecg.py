"""
Read lead data from Philips Sierra ECG XML files.

Parsing is done by libsierraecg (see sierra_native.py). This module drives its
init/read/free/cleanup protocol and copies the native result into plain
Python objects:

    >>> import sierra_ecg
    >>> leads = sierra_ecg.get_leads("sample.xml")
    >>> leads[0]["name"], leads[0]["nsamples"]
    ('I', 500)

Sample values are returned exactly as the library reports them, widened to
float. The units are scaled such that 200 == 1mV; use Lead.millivolts() for
converted values.
"""
import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from typing import List

import numpy as np

import sierra_native

logger = logging.getLogger(__name__)

# === Configuration ===
SAMPLES_PER_MILLIVOLT = 200  # raw sample units per millivolt
on_init_failure = "raise"  # "raise" -> SierraInitError, "abort" -> terminate the process
INIT_FAILURE_POLICIES = ("raise", "abort")

# libsierraecg keeps process-wide state between init and cleanup
_library_lock = threading.Lock()


class SierraECGError(Exception):
    """Base error for everything raised while reading a Sierra ECG file."""

    def __init__(self, message, path=None):
        super().__init__(message)
        self.message = message
        self.path = path


# name used by the original extension module
error = SierraECGError


class SierraFileNotFoundError(SierraECGError, FileNotFoundError):
    pass


class SierraParseError(SierraECGError):
    pass


class SierraInitError(SierraECGError):
    pass


class SierraLibraryNotFoundError(SierraECGError):
    pass


@dataclass
class Lead:
    """Lead voltage and time data of an ECG."""
    name: str
    nsamples: int
    duration: int  # msec
    data: List[float] = field(default_factory=list)

    def millivolts(self):
        return np.asarray(self.data, dtype=np.float64) / SAMPLES_PER_MILLIVOLT

    def as_dict(self):
        return asdict(self)


@dataclass
class SierraECG:
    version: str
    leads: List[Lead] = field(default_factory=list)

    @property
    def lead_names(self):
        return [lead.name for lead in self.leads]


def check_file(path):
    """Raise SierraFileNotFoundError unless path exists."""
    if not os.path.exists(path):
        display_path = os.fsdecode(path)
        raise SierraFileNotFoundError(f"File doesn't exist: {display_path}", path=display_path)


def transcode_lead(lead):
    """Copy one native lead_t into a Lead."""
    count = int(lead.count)
    if count:
        samples = np.ctypeslib.as_array(lead.samples, shape=(count,))
        # astype copies, so nothing here points into library memory
        data = samples.astype(np.float64).tolist()
    else:
        data = []

    name = lead.name.decode("utf-8", errors="replace") if lead.name else ""
    return Lead(name=name, nsamples=count, duration=int(lead.duration), data=data)


def transcode(ecg):
    """Copy the first ``ecg.valid`` leads out of a native ecg_t."""
    valid = min(int(ecg.valid), sierra_native.MAX_LEADS)
    if valid != ecg.valid:
        logger.warning(
            "libsierraecg reported %d valid leads, only %d slots exist", ecg.valid, valid
        )
    return [transcode_lead(ecg.leads[i]) for i in range(valid)]


def _decode_version(ecg):
    # ctypes already stops a char array at the first NUL
    return ecg.version.decode("ascii", errors="replace")


def _get_library():
    try:
        return sierra_native.load_library()
    except OSError as e:
        raise SierraLibraryNotFoundError(f"Unable to load libsierraecg: {e}") from e


def _init_library(library, path, init_failure):
    if library.init():
        if init_failure == "abort":
            logger.critical("libsierraecg failed to initialise, aborting")
            os.abort()
        raise SierraInitError(
            f"Unable to initialise libsierraecg while reading: {os.fsdecode(path)}",
            path=os.fsdecode(path),
        )


def read_ecg(path, library=None, init_failure=None):
    """
    Parse a Sierra ECG XML file.

    Args:
        path: Path to the XML file
        library: Object with init/read/free/cleanup methods, defaults to the
            shared libsierraecg
        init_failure: "raise" or "abort", defaults to module level on_init_failure

    Returns:
        SierraECG with one Lead per valid lead in the file

    Raises:
        SierraFileNotFoundError, SierraParseError, SierraInitError,
        SierraLibraryNotFoundError; ValueError for an unknown init_failure
    """
    init_failure = init_failure or on_init_failure
    if init_failure not in INIT_FAILURE_POLICIES:
        raise ValueError(
            f"init_failure must be one of {INIT_FAILURE_POLICIES}, got {init_failure!r}"
        )

    check_file(path)

    if library is None:
        library = _get_library()

    with _library_lock:
        _init_library(library, path, init_failure)
        logger.debug("libsierraecg initialised, reading %s", path)
        try:
            ecg = sierra_native.EcgStruct()
            if library.read(path, ecg):
                logger.error("libsierraecg could not parse %s", path)
                raise SierraParseError(
                    f"Errors parsing Sierra ECG file: {os.fsdecode(path)}",
                    path=os.fsdecode(path),
                )

            try:
                result = SierraECG(version=_decode_version(ecg), leads=transcode(ecg))
            finally:
                library.free(ecg)
        finally:
            library.cleanup()
            logger.debug("libsierraecg cleaned up after %s", path)

    logger.debug("Read %d leads from %s", len(result.leads), path)
    return result


def read_leads(path, library=None):
    """Leads of a Sierra ECG XML file as Lead records."""
    return read_ecg(path, library=library).leads


def get_leads(path, library=None):
    """
    Get leads data from ECG results in XML Sierra Philips format.

    Returns a list of dicts with the keys name, nsamples, duration and data.
    """
    return [lead.as_dict() for lead in read_leads(path, library=library)]
