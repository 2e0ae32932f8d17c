"""
Vanish — Basic Usage Example

Demonstrates sharing a file by link: encrypt, publish, resolve,
download once, and watch the link self-destruct.
"""

import logging
import shutil
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from vanish import Settings, ShareError


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    settings = Settings(
        secrets=["platform-secret-change-this"],
        store_dir=Path("./example-store"),
        origin="https://vanish.example",
    )

    print("=" * 50)
    print("  Vanish — Self-Destructing File Shares")
    print("=" * 50)

    with settings.build_manager() as manager:
        document = b"Quarterly numbers: up and to the right."

        # One-time link: first download wins, then it's gone
        token = manager.create(document, "numbers.txt", "text/plain", expiry="one-time")
        link = manager.share_link(token)
        print(f"\nShare link: {link}")

        # Opening the page does NOT use up the download
        manifest = manager.resolve(manager.parse_share_link(link))
        print(f"File: {manifest.name} ({manifest.size_bytes} bytes, {manifest.mime_type})")
        print(f"Downloads remaining: {manifest.downloads_remaining}")

        # Recipient downloads
        data = manager.consume(token)
        print(f"Downloaded {len(data)} bytes, matches original: {data == document}")

        # Second attempt: the link has self-destructed
        print("\nDownloading again...")
        try:
            manager.consume(token)
            print("  ERROR: Should have failed!")
        except ShareError as e:
            print(f"  Correctly rejected: {e.user_message}")

        # Time-limited link with a download cap
        token = manager.create(document, "numbers.txt", "text/plain", expiry="24h", download_limit=3)
        manifest = manager.resolve(token)
        print(f"\n24h link allows {manifest.downloads_remaining} downloads until {manifest.expires_at} (epoch ms)")

    shutil.rmtree("./example-store", ignore_errors=True)
    print("\nCleaned up example files.")


if __name__ == "__main__":
    main()
