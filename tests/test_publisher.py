"""
Unit tests for mono_live.publisher - copy-before-return hand-off to the
render context.

Run:
    python -m pytest tests/test_publisher.py -v
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np

from mono_live.frame import FrameDescriptor
from mono_live.publisher import FramePublisher
from mono_live.render.dispatcher import RenderDispatcher


# ── helpers ──────────────────────────────────────────────────────────────

class _Recorder:
    """Renderer that keeps a copy of every frame (pixel_data dies after the call)."""

    def __init__(self):
        self.frames = []
        self.writeable = []

    def __call__(self, frame):
        self.writeable.append(frame.pixel_data.flags.writeable)
        self.frames.append((frame.sequence, frame.width, frame.height,
                            frame.stride_bytes, frame.bits_per_pixel,
                            frame.image().copy()))


def _descriptor(value, width=8, height=4, stride=8, buffer_id=1):
    pixels = np.full((height, stride), value, dtype=np.uint8)
    return FrameDescriptor(buffer_id, pixels, width, height, stride, 8)


def _make():
    rec = _Recorder()
    disp = RenderDispatcher()
    return rec, disp, FramePublisher(rec, disp)


# ── tests ────────────────────────────────────────────────────────────────

def test_publish_does_not_render_synchronously():
    rec, disp, pub = _make()
    pub.publish(_descriptor(7))
    assert rec.frames == []
    assert disp.process_pending() == 1
    assert len(rec.frames) == 1


def test_publish_copies_before_returning():
    """Mutating the device buffer after publish() must not reach the renderer."""
    rec, disp, pub = _make()
    desc = _descriptor(42)
    pub.publish(desc)
    desc.pixels[:] = 0  # device writes the next frame into this buffer

    disp.process_pending()
    assert np.all(rec.frames[0][5] == 42)


def test_frame_ready_fields():
    rec, disp, pub = _make()
    pub.publish(_descriptor(3, width=6, height=4, stride=8))
    disp.process_pending()
    seq, width, height, stride, bpp, image = rec.frames[0]
    assert (seq, width, height, stride, bpp) == (1, 6, 4, 8, 8)
    assert image.shape == (4, 6)


def test_pixel_data_is_read_only():
    rec, disp, pub = _make()
    pub.publish(_descriptor(1))
    disp.process_pending()
    assert rec.writeable == [False]


def test_latest_wins_one_render_for_burst():
    rec, disp, pub = _make()
    for value in (10, 20, 30):
        pub.publish(_descriptor(value))

    assert disp.process_pending() == 1
    assert len(rec.frames) == 1
    assert np.all(rec.frames[0][5] == 30)
    assert pub.frames_published == 3
    assert pub.frames_replaced == 2
    assert pub.frames_rendered == 1


def test_sequence_increases():
    rec, disp, pub = _make()
    for value in (1, 2, 3):
        pub.publish(_descriptor(value))
        disp.process_pending()
    assert [f[0] for f in rec.frames] == [1, 2, 3]


def test_cancel_pending_discards_unrendered_frame():
    rec, disp, pub = _make()
    pub.publish(_descriptor(5))
    pub.cancel_pending()
    disp.process_pending()
    assert rec.frames == []


def test_publish_after_cancel_is_ignored_until_resume():
    rec, disp, pub = _make()
    pub.publish(_descriptor(1))
    pub.cancel_pending()

    # a late callback still publishing after stop
    pub.publish(_descriptor(2))
    disp.process_pending()
    assert rec.frames == []
    assert pub.frames_published == 1

    pub.resume()
    pub.publish(_descriptor(3))
    disp.process_pending()
    assert len(rec.frames) == 1
    assert rec.frames[0][5][0, 0] == 3


def test_cancel_pending_before_any_publish():
    _, _, pub = _make()
    pub.cancel_pending()


def test_renderer_failure_does_not_block_next_frame():
    calls = []

    def flaky(frame):
        calls.append(frame.sequence)
        if len(calls) == 1:
            raise RuntimeError("surface gone")

    disp = RenderDispatcher()
    pub = FramePublisher(flaky, disp)
    pub.publish(_descriptor(1))
    disp.process_pending()
    pub.publish(_descriptor(2))
    disp.process_pending()
    assert calls == [1, 2]
    assert pub.frames_rendered == 1


def test_cancel_pending_from_inside_renderer_does_not_deadlock():
    disp = RenderDispatcher()
    holder = {}

    def renderer(frame):
        holder["pub"].cancel_pending(timeout=None)

    pub = FramePublisher(renderer, disp)
    holder["pub"] = pub
    pub.publish(_descriptor(1))
    assert disp.process_pending() == 1
    assert pub.frames_rendered == 1


if __name__ == "__main__":
    tests = [v for k, v in sorted(globals().items()) if k.startswith("test_")]
    for fn in tests:
        fn()
        print(f"  PASS  {fn.__name__}")
    print(f"\nAll {len(tests)} tests passed.")
