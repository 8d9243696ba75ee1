"""
Body Detection CLI Entrypoint.

Responsibility:
    Parse command-line arguments, configure the application, wire together
    the detector and I/O handlers, and run detection over the input images.

Usage:
    python main.py --source ParticipantsGO2009.jpg   # Show detections
    python main.py --source images/ --output-mode save_image,save_json
    python main.py --backend cpu --config my_config.yaml

This module is the executable entry point. It should not be imported
by other modules.
"""

import argparse
import logging
import sys
import time

# Configure logging before importing local modules
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("main")

from bodydetect.config import load_config
from bodydetect.detector import Detector
from bodydetect.errors import DeviceImageError
from bodydetect.input_handler import InputHandler
from bodydetect.output_handler import OutputHandler


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Pedestrian and face detection",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--source",
        type=str,
        help="Input source: path to an image file or a directory of images.",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to YAML configuration file.",
    )
    parser.add_argument(
        "--backend",
        type=str,
        choices=["auto", "cpu", "cuda"],
        help="Compute backend preference. Overrides config.",
    )
    parser.add_argument(
        "--output-mode",
        type=str,
        help="Output mode(s), comma-separated: display, save_image, save_json, "
             "save_csv. Example: 'display,save_json'. Overrides config.",
    )
    parser.add_argument(
        "--output-path",
        type=str,
        help="Path/directory for output artifacts. Overrides config.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    return parser.parse_args()


def main() -> int:
    """Run detection over every input image."""
    args = parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # 1. Load Configuration (CLI args > ENV > YAML > Defaults)
    try:
        config = load_config(args.config)

        # We must use object.__setattr__ because the dataclass is frozen
        if args.source is not None:
            object.__setattr__(config.input, "source", args.source)

        if args.backend is not None:
            object.__setattr__(config.device, "backend", args.backend)

        if args.output_mode is not None:
            object.__setattr__(config.output, "mode", args.output_mode)

        if args.output_path is not None:
            object.__setattr__(config.output, "save_path", args.output_path)

        logger.info("Configuration active for this run.")

    except Exception as e:
        logger.error("Configuration error: %s", e)
        return 1

    # 2. Initialize Components
    try:
        detector = Detector(config)
        input_handler = InputHandler(
            source=config.input.source,
            resize_width=config.input.resize_width,
        )
        output_handler = OutputHandler(config)

    except (FileNotFoundError, ValueError, RuntimeError) as e:
        logger.error("Initialization failed: %s", e)
        return 1
    except Exception as e:
        logger.exception("Unexpected initialization error: %s", e)
        return 1

    # 3. Processing Loop
    logger.info("Running detection on %s.", detector.device)

    frame_count = 0
    start_time = time.perf_counter()
    exit_code = 0

    try:
        for frame_id, frame in input_handler:
            frame_count += 1

            result = detector.detect(frame)
            logger.info(
                "Image %d: %d bodies, %d faces in %.1f ms (%s).",
                frame_id, len(result.bodies), len(result.faces),
                result.elapsed_ms, result.device,
            )

            if not output_handler.process_frame(frame_id, frame, result):
                logger.info("Stopping per user request.")
                break

    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
    except DeviceImageError as e:
        logger.error("Device failure, aborting: %s", e)
        exit_code = 1
    except Exception as e:
        logger.exception("Runtime error during processing: %s", e)
        exit_code = 1
    finally:
        # 4. Cleanup
        elapsed = time.perf_counter() - start_time
        if exit_code == 0:
            output_handler.finalize()

        logger.info(
            "Processing finished. Total images: %d in %.2f s.",
            frame_count, elapsed,
        )

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
