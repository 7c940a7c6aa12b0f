"""
Command Line Interface

Register users from three pose images, verify an image against a registered
user, list users and clear the store.
"""

import argparse
import logging
import sys
from typing import List, Optional

import numpy as np
from PIL import Image, ImageOps

from .authenticator import FaceAuthenticator
from .config import DEFAULT_CONFIG_PATH, load_config, setup_logging
from .errors import FaceAuthError

logger = logging.getLogger(__name__)


def load_image(path: str) -> np.ndarray:
    """Load an image file as an upright RGB uint8 array."""
    with Image.open(path) as image:
        image = ImageOps.exif_transpose(image)
        return np.asarray(image.convert('RGB'))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Face Authentication')
    parser.add_argument('--config', '-c', default=DEFAULT_CONFIG_PATH,
                        help='Configuration file path')
    subparsers = parser.add_subparsers(dest='command', required=True)

    register = subparsers.add_parser('register', help='Register a user from three poses')
    register.add_argument('name', help='User name')
    register.add_argument('--front', required=True, help='Frontal image')
    register.add_argument('--left', required=True, help='Head turned left image')
    register.add_argument('--right', required=True, help='Head turned right image')

    verify = subparsers.add_parser('verify', help='Verify an image against a user')
    verify.add_argument('name', help='User name')
    verify.add_argument('image', help='Captured image')
    verify.add_argument('--threshold', type=float,
                        help='Similarity threshold (overrides config)')

    subparsers.add_parser('list', help='List registered users')
    subparsers.add_parser('clear', help='Delete all registered users')
    return parser


def run(args: argparse.Namespace, authenticator: FaceAuthenticator) -> int:
    if args.command == 'register':
        result = authenticator.register_user(
            args.name,
            load_image(args.front),
            load_image(args.left),
            load_image(args.right),
        )
        if not result.success:
            poses = ', '.join(pose.value for pose in result.failed_poses)
            print(f"Registration failed, please recapture: {poses}")
            return 1
        action = 'Updated' if result.is_update else 'Registered'
        print(f"{action} user '{result.user_name}'")
        return 0

    if args.command == 'verify':
        result = authenticator.authenticate(args.name, load_image(args.image), args.threshold)
        print(f"{'MATCH' if result.is_match else 'NO MATCH'} (score {result.score:.4f})")
        return 0 if result.is_match else 1

    if args.command == 'list':
        users = authenticator.list_users()
        print(f"Registered users ({len(users)}):")
        for name in users:
            print(f"  {name}")
        return 0

    if args.command == 'clear':
        authenticator.clear_all_users()
        print("All users deleted")
        return 0

    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    setup_logging(config)

    try:
        with FaceAuthenticator(config) as authenticator:
            return run(args, authenticator)
    except (FaceAuthError, OSError) as e:
        logger.error(f"Application error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
