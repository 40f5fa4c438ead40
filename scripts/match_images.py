#!/usr/bin/env python3
"""
Run a face match from the command line.

Usage:
    python scripts/match_images.py selfie.jpg ref1.jpg ref2.jpg
    python scripts/match_images.py selfie.jpg https://cdn.example/ref.jpg --tolerance 0.5
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
import json
import logging

from config import Config
from engines.facial_recognition import FaceDetector, FaceMatchEngine
from services.image_source import ImageBytes, ImageSource
from services.storage_service import StorageClient

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def to_reference(value):
    """Local files are read into memory; anything else is passed through."""
    if os.path.isfile(value):
        with open(value, 'rb') as f:
            return ImageBytes(f.read(), name=value)
    return value


def tolerance_arg(value):
    """argparse type for --tolerance: a number in (0, 1]."""
    try:
        tolerance = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"tolerance must be a number, got {value!r}")
    if not 0 < tolerance <= 1:
        raise argparse.ArgumentTypeError(f"tolerance must be in (0, 1], got {tolerance}")
    return tolerance


def main(argv=None):
    parser = argparse.ArgumentParser(description='Find the best matching reference image for a selfie')
    parser.add_argument('probe', help='selfie: local file, URL or storage path')
    parser.add_argument('candidates', nargs='*', help='reference images')
    parser.add_argument('--tolerance', type=tolerance_arg, default=Config.FACE_MATCH_TOLERANCE)
    parser.add_argument('--workers', type=int, default=Config.MATCH_MAX_WORKERS)
    args = parser.parse_args(argv)

    detector = FaceDetector(model_name=Config.FACE_MODEL_NAME, gpu_id=Config.FACE_GPU_ID,
                            det_size=Config.FACE_DET_SIZE)
    storage = StorageClient(Config.SUPABASE_URL, Config.SUPABASE_ANON_KEY)
    source = ImageSource(storage, timeout=Config.IMAGE_FETCH_TIMEOUT,
                         default_bucket=Config.REFERENCE_BUCKET,
                         max_bytes=Config.MAX_IMAGE_BYTES)
    engine = FaceMatchEngine(detector, source, max_workers=args.workers)

    outcome = engine.find_best_match(
        to_reference(args.probe),
        [to_reference(c) for c in args.candidates],
        tolerance=args.tolerance,
    )
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.matched else 1


if __name__ == '__main__':
    sys.exit(main())
