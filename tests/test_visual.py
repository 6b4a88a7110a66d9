import numpy as np

from facevibe.visual import OverlayPublisher, draw_message, draw_status_line


def test_publish_draws_and_clears(make_detection):
    pub = OverlayPublisher((64, 48))
    pub.publish([make_detection(landmarks=((20.0, 20.0), (25.0, 22.0)))], (64, 48))
    assert pub.surface.any()
    pub.publish([], (64, 48))
    assert not pub.surface.any()

def test_publish_rescales_to_display_size(make_detection):
    pub = OverlayPublisher((64, 48), draw_boxes=False, draw_labels=False)
    det = make_detection(landmarks=((10.0, 10.0),), image_size=(32, 24))
    pub.publish([det], (128, 96))
    assert pub.display_size == (128, 96)
    ys, xs = np.nonzero(pub.surface[:, :, 1])
    # point at (10, 10) in a 32x24 image lands around (40, 40) on a 128x96 surface
    assert abs(xs.mean() - 40) <= 1 and abs(ys.mean() - 40) <= 1

def test_publish_reuses_surface(make_detection):
    pub = OverlayPublisher((64, 48))
    surface = pub.surface
    pub.publish([make_detection()], (64, 48))
    assert pub.surface is surface

def test_compose_overlays_on_resized_frame(make_detection):
    pub = OverlayPublisher((64, 48))
    pub.publish([make_detection()], (64, 48))
    frame = np.full((96, 128, 3), 7, dtype=np.uint8)
    out = pub.compose(frame)
    assert out.shape == (48, 64, 3)
    assert (out != 7).any()
    assert (frame == 7).all()

def test_draw_message_cases():
    out = draw_message((64, 48), "Error!", "detail")
    assert out.shape == (48, 64, 3) and out.any()
    line = draw_status_line(np.zeros((48, 64, 3), dtype=np.uint8), "Mood: happy")
    assert line.any()
