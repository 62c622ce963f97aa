"""
Main loop: load config, open the camera, start the render thread and the
capture callback, serve the Web UI, report stats until Ctrl-C.

Run from the project root:
    python -m mono_live.main_loop [--driver fake|ueye] [--device-id N]

Then open http://localhost:5000 in your browser.
"""

import argparse
import logging
import threading
import time

from mono_live.config import CameraConfig
from mono_live.drivers import make_driver
from mono_live.logger import get_logger, LOG_FILE
from mono_live.publisher import FramePublisher
from mono_live.render import RenderDispatcher
from mono_live.session import DeviceSession
from mono_live.web_ui.app import DisplaySurface, create_app

log = get_logger("main_loop")

# Suppress noisy Flask/werkzeug access logs (they still go to the file)
logging.getLogger("werkzeug").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live mono8 camera view")
    parser.add_argument("--config", default=None, help="path to camera.json")
    parser.add_argument("--driver", choices=("fake", "ueye"), default=None)
    parser.add_argument("--device-id", type=int, default=None)
    parser.add_argument("--port", type=int, default=None, help="Web UI port")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    # ------------------------------------------------------------------
    # 1. Load config
    # ------------------------------------------------------------------
    config = CameraConfig(
        args.config, driver=args.driver, device_id=args.device_id, web_port=args.port,
    )
    log.info("Config loaded: %s", config.as_dict())

    # ------------------------------------------------------------------
    # 2. Render context and display surface
    # ------------------------------------------------------------------
    dispatcher = RenderDispatcher()
    dispatcher.start()
    surface = DisplaySurface(jpeg_quality=config.jpeg_quality)
    publisher = FramePublisher(surface, dispatcher)

    # ------------------------------------------------------------------
    # 3. Open the camera and start live video
    # ------------------------------------------------------------------
    session = DeviceSession(make_driver(config), buffer_count=config.buffer_count)
    if session.try_initialize(config.device_id):
        session.start_capture(publisher)
    else:
        # The Web UI shows the failure; keep serving so the user sees it.
        log.error("Camera could not be initialized. Log file: %s", LOG_FILE)

    # ------------------------------------------------------------------
    # 4. Start Web UI (Flask) in a background thread
    # ------------------------------------------------------------------
    app = create_app(surface, session, publisher, stream_fps=config.stream_fps)
    flask_thread = threading.Thread(
        target=lambda: app.run(
            host=config.web_host, port=config.web_port, threaded=True, use_reloader=False,
        ),
        name="MonoLive-Flask", daemon=True,
    )
    flask_thread.start()
    log.info("Web UI started on http://%s:%d", config.web_host, config.web_port)

    # ------------------------------------------------------------------
    # 5. Report stats every few seconds
    # ------------------------------------------------------------------
    try:
        while True:
            time.sleep(5.0)
            stats = session.stats
            log.info(
                "state=%s signalled=%d published=%d dropped=%d replaced=%d rendered=%d (%.1f fps)",
                session.state.value, stats.frames_signalled, stats.frames_published,
                stats.frames_dropped, publisher.frames_replaced,
                surface.frames_rendered, surface.fps,
            )
    except KeyboardInterrupt:
        log.info("Shutting down...")
    finally:
        session.close()
        dispatcher.stop()
        log.info("Bye.")


if __name__ == "__main__":
    main()
