"""
Predict CLI - Recognize every answer region of a manifest.

Usage:
  exam-hwr predict regions.json --exam-id 42
  exam-hwr predict regions.json --exam-id 42 --concurrency 2 --workers thread

The manifest is a JSON list (or an object with a "regions" list) of:
  {"pageNumber": 1, "questionId": 7, "studentIndex": 3, "image": "crops/p1_q7.png"}
Image paths are relative to the manifest.

Environment variables:
  HWR_API_URL, HWR_AUTH_TOKEN, HWR_HTTP_TIMEOUT, HWR_ZONE_TAG
  HWR_MAX_CONCURRENT, HWR_INTER_TASK_DELAY, HWR_PAUSE_POLL
  HWR_MODEL_PATH, HWR_PREFER_GPU

While running: SIGUSR1 pauses dispatch, SIGUSR2 resumes it, SIGINT/SIGTERM
stop dispatching and wait for in-flight tasks.
"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Iterator

import click
from rich.console import Console
from rich.table import Table

console = Console()
logger = logging.getLogger("exam_hwr.cli.predict")


def iter_manifest(manifest_path: Path) -> Iterator:
    """Read the manifest and yield its ImageRegions in order, loading each image only when reached."""
    from exam_hwr.core.models import ImageRegion
    from exam_hwr.io.images import load_image

    with manifest_path.open(encoding="utf-8") as f:
        raw = json.load(f)
    entries = raw.get("regions", []) if isinstance(raw, dict) else raw

    for entry in entries:
        pixels = load_image(manifest_path.parent / entry["image"])
        yield ImageRegion(
            page_number=int(entry.get("pageNumber", 1)),
            pixel_buffer=pixels,
            width=int(pixels.shape[1]),
            height=int(pixels.shape[0]),
            question_id=int(entry["questionId"]),
            student_index=int(entry["studentIndex"]),
        )


def _install_signal_handlers(loop, scheduler, pause_signal) -> None:
    handlers = {
        signal.SIGINT: scheduler.request_shutdown,
        signal.SIGTERM: scheduler.request_shutdown,
    }
    if hasattr(signal, "SIGUSR1"):
        handlers[signal.SIGUSR1] = pause_signal.pause
        handlers[signal.SIGUSR2] = pause_signal.resume

    for sig, handler in handlers.items():
        try:
            loop.add_signal_handler(sig, handler)
        except NotImplementedError:
            logger.warning(f"Signal handlers not supported on this platform ({sig.name})")


@click.command()
@click.argument('manifest', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--exam-id', type=str, required=True, help='Exam the regions belong to')
@click.option('--concurrency', type=int, help='Maximum tasks in flight (default: HWR_MAX_CONCURRENT or 1)')
@click.option('--delay', type=float, help='Seconds between a completion and the next dispatch (default: 0.2)')
@click.option('--workers', type=click.Choice(['process', 'thread']), default='process', help='Isolation of recognition units')
@click.option('--model-config', type=click.Path(exists=True, dir_okay=False), help='model_config.json next to the ONNX model')
@click.option('--api-url', type=str, help='Backend base URL (default: HWR_API_URL)')
@click.option('--output', type=click.Path(dir_okay=False, path_type=Path), help='Write results as JSON to this file')
def predict(manifest, exam_id, concurrency, delay, workers, model_config, api_url, output):
    """Recognize the answer regions listed in MANIFEST and store the predictions."""
    from exam_hwr.config import PipelineConfig
    from exam_hwr.core.models import RecognitionTask
    from exam_hwr.core.pause import PauseSignal
    from exam_hwr.core.scheduler import RecognitionScheduler
    from exam_hwr.core.unit import UnitSettings, create_unit_pool, run_recognition_task
    from exam_hwr.recognition.config import RecognitionConfig

    cfg = PipelineConfig.from_env(
        api_base_url=api_url,
        max_concurrent=concurrency,
        inter_task_delay_seconds=delay,
    )
    if not cfg.auth_token:
        # tasks still run and report MISSING_CREDENTIAL individually
        logger.warning("HWR_AUTH_TOKEN is not set; every task will fail without touching the backend")

    if model_config:
        recognition = RecognitionConfig.from_model_config(model_config, prefer_gpu=cfg.prefer_gpu)
    else:
        recognition = RecognitionConfig.default(cfg.model_path, prefer_gpu=cfg.prefer_gpu)

    settings = UnitSettings(
        api_base_url=cfg.api_base_url,
        recognition=recognition,
        http_timeout_seconds=cfg.http_timeout_seconds,
        zone_tag=cfg.zone_tag,
    )

    pause_signal = PauseSignal()

    async def _run():
        pool = create_unit_pool(settings, kind=workers, max_workers=cfg.max_concurrent)
        try:
            scheduler = RecognitionScheduler(
                run_recognition_task,
                pool,
                max_concurrent=cfg.max_concurrent,
                inter_task_delay=cfg.inter_task_delay_seconds,
                pause_poll_interval=cfg.pause_poll_seconds,
                pause_signal=pause_signal,
            )
            _install_signal_handlers(asyncio.get_running_loop(), scheduler, pause_signal)
            # the scheduler is the only holder of tasks and their pixels
            accepted = scheduler.enqueue_batch(
                RecognitionTask.for_region(region, exam_id, cfg.auth_token) for region in iter_manifest(manifest)
            )
            if not accepted:
                return None
            logger.info(
                "Starting prediction run",
                extra={"exam_id": exam_id, "tasks": accepted, "max_concurrent": cfg.max_concurrent, "workers": workers},
            )
            return await scheduler.run()
        finally:
            pool.shutdown(wait=True)

    report = asyncio.run(_run())
    if report is None:
        console.print("[yellow]Manifest lists no regions[/yellow]")
        return

    table = Table(title=f"Predictions for exam {exam_id}")
    table.add_column("Student", style="cyan")
    table.add_column("Question", style="cyan")
    table.add_column("Status")
    table.add_column("Text", style="green")
    table.add_column("Error", style="red")

    status_style = {"ok": "green", "no_result": "yellow", "error": "red"}
    for key in report.dispatch_order:
        result = report.results.get(key)
        if result is None:
            continue
        text = result.text if len(result.text) <= 60 else result.text[:57] + "..."
        table.add_row(
            str(result.student_id),
            str(result.question_id),
            f"[{status_style[result.status]}]{result.status}[/{status_style[result.status]}]",
            text.replace("\n", " / "),
            result.error_kind.value if result.error_kind else "",
        )
    console.print(table)

    stats = report.stats
    console.print(
        f"ok={stats['ok']} no_result={stats['no_result']} errors={stats['errors']} "
        f"duplicates={stats['duplicates']} undispatched={len(report.undispatched)}"
    )

    if output:
        payload = [
            {
                "studentId": r.student_id,
                "questionId": r.question_id,
                "status": r.status,
                "text": r.text,
                "errorKind": r.error_kind.value if r.error_kind else None,
                "message": r.message,
                "fromExisting": r.from_existing,
            }
            for r in (report.results[k] for k in report.dispatch_order if k in report.results)
        ]
        output.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        console.print(f"Results written to [bold]{output}[/bold]")

    if stats['errors'] or report.undispatched:
        sys.exit(1)
