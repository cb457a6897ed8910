"""Command-line entry point: rectify a photographed document to PNG."""

import argparse
import logging
import sys
from typing import List, Optional

from .config import load_config
from .exceptions import ScannerError
from .imaging import encode_png, load_image
from .logging_config import setup_logging
from .pipeline import scan_image

logger = logging.getLogger('docscanner.cli')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='docscan',
        description='Detect a document in a photo and save a flattened, cropped copy.',
    )
    parser.add_argument('image', help='input photo')
    parser.add_argument('-o', '--output', default='result.png', help='output PNG path (default: result.png)')
    parser.add_argument('--document', action='store_true', help='binarize the result (document mode)')
    parser.add_argument('--config', help='JSON configuration file')
    parser.add_argument('--overlay', help='also save the detection overlay to this PNG path')
    parser.add_argument('--debug-overlay', action='store_true', help='draw all contours and candidates in the overlay')
    parser.add_argument('-v', '--verbose', action='store_true', help='debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    overrides = {}
    if args.document:
        overrides['output_mode'] = 'document'
    if args.debug_overlay:
        overrides['debug_overlay'] = True

    try:
        config = load_config(args.config, **overrides)
        image = load_image(args.image)
        detection, rectified = scan_image(image, config)
    except (OSError, ValueError, ScannerError) as e:
        logger.error(f"{args.image}: {e}")
        return 2

    if args.overlay and detection is not None:
        with open(args.overlay, 'wb') as f:
            f.write(encode_png(detection.overlay))

    if rectified is None:
        logger.error(f"No document found in {args.image}")
        return 1

    with open(args.output, 'wb') as f:
        f.write(rectified.png)
    logger.info(f"Saved {rectified.width}x{rectified.height} {rectified.mode} image to {args.output}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
