import argparse
import logging
import sys

from drivefs.config.manager import ConfigManager, CONFIG_FILE
from drivefs.fs.driveFS import mount_daemon
from drivefs.graph_client.client import GraphAuth
from drivefs.graph_client.errors import AuthError, GraphAPIError
from drivefs.graph_client.graph_drive import GraphDrive
from drivefs.objects.item import DriveItem
from drivefs.sync.uploader import UploadWorker

logger = logging.getLogger("drivefs")


def main():
    parser = argparse.ArgumentParser(description="drivefs: mount a OneDrive account with FUSE")
    parser.add_argument("--config", default=str(CONFIG_FILE), help="Path to configuration file")
    parser.add_argument("--mount-point", help="Mount point (overrides config)")
    parser.add_argument("--login", action="store_true", help="Discard stored credentials and log in again")
    parser.add_argument("--debug", action="store_true", help="Log every filesystem call")
    args = parser.parse_args()

    config = ConfigManager(args.config)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # urllib3 logs every request at debug level
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    # 1. Auth
    client_id = config.client_id
    if not client_id:
        client_id = input("Please enter your Azure application (client) ID: ").strip()
        config.set("client_id", client_id)

    auth = GraphAuth(client_id, redirect_uri=config.get("redirect_uri"))
    try:
        if args.login:
            auth.forget()
            auth.login()
        else:
            auth.authenticate()
    except AuthError as e:
        logger.error(f"Authentication failed: {e}")
        sys.exit(1)

    # 2. Tree root
    drive = GraphDrive(auth, api_root=config.api_root, timeout=config.request_timeout)
    uploader = UploadWorker(max_workers=config.upload_workers, max_retries=config.upload_retries)
    try:
        root = DriveItem.new_root(drive.get_item("/"), drive, uploader, cache_ttl=config.cache_ttl)
    except GraphAPIError as e:
        logger.error(f"Could not fetch the drive root: {e}")
        sys.exit(1)

    # 3. FUSE
    mount_point = args.mount_point or config.mount_point
    logger.info(f"Mounting OneDrive at: {mount_point}")
    try:
        mount_daemon(root, mount_point)
    except KeyboardInterrupt:
        logger.info("Stopping...")
    except RuntimeError as e:
        logger.error(f"FUSE Error: {e}")
        logger.info(f"Try running: fusermount -u {mount_point}")
        sys.exit(1)
    finally:
        uploader.shutdown(wait=True)


if __name__ == "__main__":
    main()
