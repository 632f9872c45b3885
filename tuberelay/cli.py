"""
TubeRelay CLI - 列出可用格式 / 下载指定格式
"""
import argparse
import asyncio
import os
import sys

from tuberelay.downloader import VideoDownloader
from tuberelay.errors import DeliveryError
from tuberelay.utils import config
from tuberelay.utils.logger import logger


def _format_size(size):
    if not size:
        return "?"
    power = 2**10
    n = 0
    labels = {0: "", 1: "K", 2: "M", 3: "G", 4: "T"}
    while size > power and n < 4:
        size /= power
        n += 1
    return f"{size:.1f} {labels[n]}B"


def print_catalog(metadata, catalog):
    print(f"{metadata.title} ({metadata.duration}s) - {metadata.uploader}")
    for r in catalog:
        kind = "video only" if r.is_adaptive else "video+audio"
        print(f"  {r.format_id:>6}  {r.quality_label:<10} {r.container:<5} {_format_size(r.filesize):>10}  {kind}")


def main():
    parser = argparse.ArgumentParser(
        description="TubeRelay: 视频格式列表与下载工具"
    )

    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help="YouTube 视频 URL 或视频 ID"
    )
    parser.add_argument(
        "--format",
        type=str,
        default=None,
        help="要下载的格式 ID (默认: 最高画质)"
    )
    parser.add_argument(
        "--output_dir",
        type=str,
        default="downloads",
        help="下载输出目录 (默认: downloads)"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="只列出可用格式，不下载"
    )
    parser.add_argument(
        "--init_config",
        action="store_true",
        help="写出当前配置 (含默认值) 到 config.json 后退出"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="显示详细日志"
    )

    args = parser.parse_args()

    if args.verbose:
        logger.setLevel("DEBUG")

    if args.init_config:
        sys.exit(init_config())
    if not args.url:
        parser.error("--url is required")

    downloader = VideoDownloader()
    try:
        exit_code = asyncio.run(_run(downloader, args))
    except KeyboardInterrupt:
        logger.info("\nDownload interrupted by user")
        sys.exit(0)
    sys.exit(exit_code)


def init_config() -> int:
    """Write the effective configuration so it can be edited by hand."""
    cfg = config.load_config()
    try:
        config.save_config(cfg)
    except OSError as e:
        logger.error(f"Could not write config: {e}")
        return 1
    logger.info(f"Config written to {config.CONFIG_PATH}")
    return 0


async def _run(downloader, args) -> int:
    logger.info(f"Target URL: {args.url}")
    try:
        metadata, catalog = await downloader.get_catalog(args.url)
        if args.list:
            print_catalog(metadata, catalog)
            return 0

        format_id = args.format or catalog[0].format_id

        if not os.path.exists(args.output_dir):
            os.makedirs(args.output_dir)
            logger.info(f"Created directory: {args.output_dir}")

        path, plan = await downloader.download(args.url, format_id, args.output_dir)
        logger.info(f"Download completed ({plan.strategy.value}): {path}")
        return 0
    except DeliveryError as e:
        logger.error(f"{e.kind}: {e.detail}")
        return 2
    except OSError as e:
        logger.error(f"File error: {e}")
        return 1


if __name__ == "__main__":
    main()
