"""Command line entry point: list cameras, grab a frame, or analyze files."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

import aiofiles

from capture_pipeline.analysis import AnalysisPipeline, AnalysisProgressState, AnalysisTransport, Enrichment
from capture_pipeline.batch import (
    CaptureBatchStore,
    document_draft_from_file,
    photo_draft_from_file,
    video_draft_from_file,
)
from capture_pipeline.camera import DeviceStreamManager, OpenCVPlatform
from capture_pipeline.config import PipelineConfig, load_config_async
from capture_pipeline.core.logging_config import configure_logging
from capture_pipeline.core.logging_utils import get_module_logger
from capture_pipeline.errors import CapturePipelineError

TOKEN_ENV = "CAPTURE_PIPELINE_TOKEN"

LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

logger = get_module_logger("CLI")


def _print_status(status_type: str, payload: dict) -> None:
    message = payload.get("message")
    if message:
        print(f"[{status_type}] {message}", file=sys.stderr)


def _print_progress(progress: AnalysisProgressState) -> None:
    line = f"{progress.stage.value:<13} {progress.models_complete}/{progress.models_total}  {progress.message}"
    if progress.running_estimate:
        line += f"  ~${progress.running_estimate:,.2f} ({progress.running_confidence:.0%})"
    print(line, file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="capture-pipeline", description=__doc__)
    parser.add_argument("--config", type=Path, default=None, help="Path to a key = value config file")
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=None,
        help="Logging verbosity (defaults to the config value)",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Optional path for a rotating log file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("devices", help="List available cameras")

    snapshot = subparsers.add_parser("snapshot", help="Capture one JPEG frame from the camera")
    snapshot.add_argument("--output", type=Path, required=True, help="Where to write the JPEG")
    snapshot.add_argument("--device", default=None, help="Camera id (defaults to a rear-facing camera)")

    analyze = subparsers.add_parser("analyze", help="Submit photos, documents and videos for analysis")
    analyze.add_argument("photos", nargs="*", type=Path, help="Photo files")
    analyze.add_argument("--document", action="append", type=Path, default=[], help="Document file (repeatable)")
    analyze.add_argument("--video", action="append", type=Path, default=[], help="Video file (repeatable)")
    analyze.add_argument("--base-url", default=None, help="Analysis service base URL")
    analyze.add_argument("--token", default=None, help=f"Bearer token (defaults to ${TOKEN_ENV})")
    analyze.add_argument("--category", default="general", help="Category id")
    analyze.add_argument("--subcategory", default=None, help="Subcategory id")
    analyze.add_argument("--shelf-price", type=float, default=None, help="Shelf price for listing enrichment")
    analyze.add_argument("--store", default=None, help="Store name for listing enrichment")
    analyze.add_argument("--location", default=None, help="'lat,lng' for listing enrichment")
    analyze.add_argument("--handling-hours", type=int, default=24, help="Listing handling time in hours")
    return parser


def _parse_location(raw: Optional[str]) -> Optional[tuple[float, float]]:
    if not raw:
        return None
    try:
        lat, lng = (float(part) for part in raw.split(",", 1))
    except ValueError:
        raise SystemExit(f"Invalid --location {raw!r}; expected 'lat,lng'")
    return lat, lng


def _enrichment_from_args(args: argparse.Namespace) -> Optional[Enrichment]:
    if args.shelf_price is None and args.store is None and args.location is None:
        return None
    return Enrichment(
        location_coordinates=_parse_location(args.location),
        store_descriptor=args.store,
        shelf_price=args.shelf_price,
        handling_time_hours=args.handling_hours,
    )


async def _run_devices(config: PipelineConfig) -> int:
    manager = DeviceStreamManager(
        OpenCVPlatform(probe_limit=config.camera.probe_limit, rear_label_hints=config.camera.rear_label_hints),
        settings=config.camera,
        status_callback=_print_status,
    )
    devices = await manager.refresh_devices()
    if not devices:
        print("No cameras found")
        return 1
    for device in devices:
        facing = "rear" if device.is_rear_facing else "    "
        print(f"{device.device_id:<10} {facing}  {device.label}")
    return 0


async def _run_snapshot(config: PipelineConfig, args: argparse.Namespace) -> int:
    manager = DeviceStreamManager(
        OpenCVPlatform(probe_limit=config.camera.probe_limit, rear_label_hints=config.camera.rear_label_hints),
        settings=config.camera,
        status_callback=_print_status,
    )
    if args.device:
        await manager.select_device(args.device)
    try:
        await manager.set_active(True)
        frame = await manager.capture_frame()
    finally:
        await manager.shutdown()
    if frame is None:
        print("No frame captured", file=sys.stderr)
        return 1
    args.output.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(args.output, "wb") as fh:
        await fh.write(frame)
    print(f"Wrote {len(frame)} bytes to {args.output}")
    return 0


async def _run_analyze(config: PipelineConfig, args: argparse.Namespace) -> int:
    store = CaptureBatchStore.from_settings(config.batch, status_callback=_print_status)
    try:
        drafts = [await photo_draft_from_file(path) for path in args.photos]
        drafts += [await document_draft_from_file(path) for path in args.document]
        drafts += [
            await video_draft_from_file(path, frame_count=config.batch.video_frame_count)
            for path in args.video
        ]
    except (OSError, CapturePipelineError) as exc:
        print(f"Could not read input: {exc}", file=sys.stderr)
        return 2
    for draft in drafts:
        await store.add_item(draft)

    enrichment = _enrichment_from_args(args)
    async with AnalysisTransport(config.analysis) as transport:
        pipeline = AnalysisPipeline(
            transport,
            settings=config.analysis,
            auth_token=args.token or os.environ.get(TOKEN_ENV),
            status_callback=_print_status,
            progress_callback=_print_progress,
        )
        outcome = await pipeline.submit(
            store.selected_items,
            category_id=args.category,
            subcategory_id=args.subcategory,
            enrichment=enrichment,
            require_enrichment=enrichment is not None,
        )

    if not outcome.ok or outcome.result is None:
        print(f"{outcome.status.value}: {outcome.message}", file=sys.stderr)
        return 1
    print(json.dumps(outcome.result.to_dict(), indent=2, ensure_ascii=False))
    return 0


async def run(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    overrides = {}
    if getattr(args, "base_url", None):
        overrides["analysis.base_url"] = args.base_url
    if args.log_level:
        overrides["logging.level"] = args.log_level
    if args.log_file:
        overrides["logging.file"] = str(args.log_file)
    config = await load_config_async(args.config, overrides)

    configure_logging(
        config.logging.level,
        console=True,
        log_file=config.logging.file if args.log_file else None,
    )
    logger.debug("Running %s", args.command)

    match args.command:
        case "devices":
            return await _run_devices(config)
        case "snapshot":
            return await _run_snapshot(config, args)
        case "analyze":
            return await _run_analyze(config, args)
    return 2


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        return asyncio.run(run(argv))
    except KeyboardInterrupt:
        return 130


__all__ = ["build_parser", "main", "run"]
