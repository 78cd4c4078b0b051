"""
ctypes binding for libsierraecg.

Only the struct layout and the four lifecycle calls live here. Everything that
decides *when* to call them is in sierra_ecg.py.
"""
import ctypes
import ctypes.util
import logging
import os

logger = logging.getLogger(__name__)

# === Configuration ===
LIBRARY_ENV_VAR = "SIERRAECG_LIBRARY"  # Optional explicit path to the shared library
LIBRARY_NAME = "sierraecg"  # Name passed to ctypes.util.find_library
MAX_LEADS = 16  # lead_t leads[16]
VERSION_LENGTH = 8  # char version[8]


class LeadStruct(ctypes.Structure):
    """lead_t: one lead as filled in by sierraecg_read."""
    _fields_ = [
        ("name", ctypes.c_char_p),  # e.g. I, II, III
        ("samples", ctypes.POINTER(ctypes.c_short)),  # 200 == 1mV
        ("count", ctypes.c_size_t),  # number of samples
        ("duration", ctypes.c_size_t),  # total msec of the recording
    ]


class EcgStruct(ctypes.Structure):
    """ecg_t: the whole parse result."""
    _fields_ = [
        ("version", ctypes.c_char * VERSION_LENGTH),  # i.e. 1.03 or 1.04
        ("leads", LeadStruct * MAX_LEADS),
        ("valid", ctypes.c_size_t),  # how many leads were read
    ]


def find_library_path():
    """Locate the shared library, environment variable first."""
    path = os.environ.get(LIBRARY_ENV_VAR)
    if path:
        return path
    return ctypes.util.find_library(LIBRARY_NAME)


class SierraLibrary:
    """
    Thin wrapper over the loaded CDLL.

    Each method maps to one C call and returns its status unchanged;
    non-zero means failure for init and read.
    """

    def __init__(self, path):
        self.path = path
        self._lib = ctypes.CDLL(path)

        self._lib.sierraecg_init.argtypes = []
        self._lib.sierraecg_init.restype = ctypes.c_int
        self._lib.sierraecg_read.argtypes = [ctypes.c_char_p, ctypes.POINTER(EcgStruct)]
        self._lib.sierraecg_read.restype = ctypes.c_int
        self._lib.sierraecg_free.argtypes = [ctypes.POINTER(EcgStruct)]
        self._lib.sierraecg_free.restype = None
        self._lib.sierraecg_cleanup.argtypes = []
        self._lib.sierraecg_cleanup.restype = None

    def init(self):
        return self._lib.sierraecg_init()

    def read(self, path, ecg):
        return self._lib.sierraecg_read(os.fsencode(path), ctypes.byref(ecg))

    def free(self, ecg):
        self._lib.sierraecg_free(ctypes.byref(ecg))

    def cleanup(self):
        self._lib.sierraecg_cleanup()

    def __repr__(self):
        return f"SierraLibrary({self.path!r})"


_library = None


def load_library(path=None):
    """
    Load libsierraecg, caching the default instance.

    Raises OSError when no library can be found or loaded; sierra_ecg turns
    that into SierraLibraryNotFoundError.
    """
    global _library

    if path is not None:
        logger.debug("Loading libsierraecg from %s", path)
        return SierraLibrary(path)

    if _library is None:
        found = find_library_path()
        if not found:
            raise OSError(
                f"libsierraecg not found; set {LIBRARY_ENV_VAR} to the shared library path"
            )
        logger.debug("Loading libsierraecg from %s", found)
        _library = SierraLibrary(found)

    return _library
