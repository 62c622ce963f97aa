"""
Tests for mono_live.drivers.ueye - buffer allocation against a recording
stand-in for the uEye API calls.  Needs pyueye installed; no camera.

Run:
    python -m pytest tests/test_ueye_driver.py -v
"""

import sys
import os
import types

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

pytest.importorskip("pyueye")

from mono_live.drivers import ueye as ueye_driver
from mono_live.errors import AllocationError


# ── helpers ──────────────────────────────────────────────────────────────

class _Int:
    def __init__(self, value=0):
        self.value = value

    def __int__(self):
        return self.value


def _api(pitch=656, inquire_ret=0):
    """Just enough of the uEye API for alloc_buffer/free_buffer."""
    calls = []
    next_id = [1]

    def alloc(h_cam, width, height, bits, mem_ptr, mem_id):
        calls.append(("alloc", width, height, bits))
        mem_id.value = next_id[0]
        next_id[0] += 1
        return 0

    def inquire(h_cam, mem_ptr, mem_id, x, y, bits, pitch_out):
        calls.append(("inquire", int(mem_id)))
        x.value, y.value, bits.value, pitch_out.value = 640, 480, 8, pitch
        return inquire_ret

    def active_pitch(h_cam, pitch_out):
        # Nothing is active right after is_AllocImageMem.
        calls.append(("active_pitch",))
        return -1

    def free(h_cam, mem_ptr, mem_id):
        calls.append(("free", int(mem_id)))
        return 0

    api = types.SimpleNamespace(
        IS_SUCCESS=0,
        c_mem_p=object,
        int=_Int,
        INT=_Int,
        is_AllocImageMem=alloc,
        is_InquireImageMem=inquire,
        is_GetImageMemPitch=active_pitch,
        is_FreeImageMem=free,
    )
    return api, calls


def _driver(monkeypatch, **api_kwargs):
    api, calls = _api(**api_kwargs)
    monkeypatch.setattr(ueye_driver, "ueye", api)
    driver = ueye_driver.UEyeDriver()
    driver._h_cam = 1
    return driver, calls


# ── tests ────────────────────────────────────────────────────────────────

def test_alloc_reads_pitch_of_the_new_buffer(monkeypatch):
    driver, calls = _driver(monkeypatch, pitch=656)
    buffer_id, stride = driver.alloc_buffer(640, 480, 8)
    assert buffer_id == 1
    assert stride == 656
    assert ("inquire", 1) in calls
    assert ("active_pitch",) not in calls


def test_every_buffer_of_a_ring_gets_its_own_pitch(monkeypatch):
    driver, calls = _driver(monkeypatch)
    ids = [driver.alloc_buffer(640, 480, 8)[0] for _ in range(3)]
    assert ids == [1, 2, 3]
    assert [c for c in calls if c[0] == "inquire"] == [
        ("inquire", 1), ("inquire", 2), ("inquire", 3),
    ]


def test_failed_inquiry_frees_the_buffer(monkeypatch):
    driver, calls = _driver(monkeypatch, inquire_ret=-1)
    with pytest.raises(AllocationError):
        driver.alloc_buffer(640, 480, 8)
    assert ("free", 1) in calls
    assert driver._mem == {}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
