#!/usr/bin/env python
"""Run analysis + layout + render end-to-end on files from a directory."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import soundfile as sf

from podmix.core.config import settings
from podmix.models.clip import ClipKind
from podmix.renderers.mix_renderer import RenderResult
from podmix.schemas.layout import LayoutOut, RenderOut
from podmix.schemas.mixer import MixerSettings
from podmix.services.mix_service import MixService, layout_to_schema


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Lay out and render a program (music / spoken / jingle clips + optional underlay)."
    )
    parser.add_argument(
        "input_dir",
        help="Directory containing input audio clips.",
    )
    parser.add_argument(
        "--program-json",
        default=None,
        help=(
            "Optional JSON list of {\"file\", \"kind\", \"vocal_start_time\"} in program order. "
            "Without it every audio file in the directory is treated as music, sorted by name."
        ),
    )
    parser.add_argument(
        "--underlay",
        default=None,
        help="Optional audio file looped under gaps between music clips.",
    )
    parser.add_argument(
        "--sample-rate",
        type=int,
        default=settings.RENDER_SAMPLE_RATE,
        help="Render sample rate.",
    )
    parser.add_argument("--mix-duration", type=float, default=settings.MIX_DURATION_S, help="Crossfade length (s).")
    parser.add_argument("--ducking-amount", type=float, default=settings.DUCKING_AMOUNT, help="0..1 music reduction under speech.")
    parser.add_argument("--ramp-up", type=float, default=settings.RAMP_UP_DURATION_S, help="Ramp back after ducking (s).")
    parser.add_argument("--underlay-volume", type=float, default=settings.UNDERLAY_VOLUME, help="Underlay level 0..1.")
    parser.add_argument("--silence-threshold-db", type=float, default=settings.SILENCE_THRESHOLD_DB, help="Trim threshold (dBFS).")
    parser.add_argument("--no-trim", action="store_true", help="Disable silence trimming.")
    parser.add_argument("--no-normalize-clips", action="store_true", help="Disable per-clip loudness matching.")
    parser.add_argument("--no-normalize-output", action="store_true", help="Disable output peak normalization.")
    parser.add_argument(
        "--output-audio",
        default=None,
        help="Output WAV path (default: ./mix_pipeline_outputs/rendered_program.wav).",
    )
    parser.add_argument(
        "--output-summary-json",
        default=None,
        help="Output JSON summary path (default: next to output audio).",
    )
    parser.add_argument(
        "--enable-timing-logs",
        action="store_true",
        help="Enable timing logs from analyzer + renderer.",
    )
    return parser.parse_args()


SUPPORTED_AUDIO_EXTENSIONS = {
    ".wav",
    ".flac",
    ".ogg",
    ".mp3",
    ".aiff",
    ".aif",
    ".opus",
}


def _collect_clips_from_dir(input_dir: Path) -> list[Path]:
    clips = [
        p.resolve()
        for p in input_dir.iterdir()
        if p.is_file() and p.suffix.lower() in SUPPORTED_AUDIO_EXTENSIONS
    ]
    clips.sort(key=lambda p: (p.name.lower(), str(p)))
    return clips


def _load_program(path: str | None, input_dir: Path) -> list[dict[str, Any]]:
    if path is None:
        return [{"path": p, "kind": ClipKind.MUSIC.value, "vocal_start_time": 0.0} for p in _collect_clips_from_dir(input_dir)]

    payload = json.loads(Path(path).expanduser().resolve().read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("program JSON must be a list")

    out: list[dict[str, Any]] = []
    for i, item in enumerate(payload):
        if not isinstance(item, dict) or "file" not in item:
            raise ValueError(f"program[{i}] must be an object with a 'file' key")
        clip_path = (input_dir / str(item["file"])).resolve()
        if not clip_path.is_file():
            raise FileNotFoundError(f"program[{i}] file not found: {clip_path}")
        out.append(
            {
                "path": clip_path,
                "kind": ClipKind(str(item.get("kind", "music"))).value,
                "vocal_start_time": float(item.get("vocal_start_time", 0.0)),
            }
        )
    return out


def _mixer_settings(args: argparse.Namespace) -> MixerSettings:
    return MixerSettings(
        mix_duration=args.mix_duration,
        ducking_amount=args.ducking_amount,
        ramp_up_duration=args.ramp_up,
        underlay_volume=args.underlay_volume,
        silence_threshold_db=args.silence_threshold_db,
        trim_silence_enabled=not args.no_trim,
        normalize_clips=not args.no_normalize_clips,
        normalize_output=not args.no_normalize_output,
    )


async def _run_pipeline(
    program: list[dict[str, Any]],
    underlay_path: Path | None,
    mixer: MixerSettings,
    *,
    sample_rate: int,
) -> tuple[LayoutOut, RenderResult]:
    service = MixService(analysis_sample_rate=sample_rate)
    for entry in program:
        path: Path = entry["path"]
        await service.add_clip(
            path.read_bytes(),
            entry["kind"],
            name=path.stem,
            vocal_start_time=entry["vocal_start_time"],
        )
    if underlay_path is not None:
        await service.set_underlay(underlay_path.read_bytes(), name=underlay_path.stem)

    failures = await service.analyze_all(mixer)
    for failure in failures:
        logging.warning("Analysis skipped: %s", failure)

    layout = layout_to_schema(service.layout(mixer))

    last_reported = -10.0

    def report(pct: float) -> None:
        nonlocal last_reported
        if pct - last_reported >= 10.0 or pct >= 100.0:
            logging.info("Render progress: %.0f%%", pct)
            last_reported = pct

    result = await service.render(mixer, sample_rate, progress=report)
    return layout, result


def main() -> int:
    args = parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="[%(levelname)s] %(message)s")
    if args.enable_timing_logs:
        settings.ENABLE_TIMING_LOGS = True

    input_dir = Path(args.input_dir).expanduser().resolve()
    if not input_dir.exists():
        raise FileNotFoundError(f"Input directory does not exist: {input_dir}")
    if not input_dir.is_dir():
        raise NotADirectoryError(f"Input path is not a directory: {input_dir}")

    program = _load_program(args.program_json, input_dir)
    if not program:
        raise ValueError(
            f"No supported audio files found in {input_dir}. "
            f"Supported extensions: {sorted(SUPPORTED_AUDIO_EXTENSIONS)}"
        )
    underlay_path = Path(args.underlay).expanduser().resolve() if args.underlay else None

    mixer = _mixer_settings(args)
    layout, result = asyncio.run(_run_pipeline(program, underlay_path, mixer, sample_rate=int(args.sample_rate)))

    output_audio_path = (
        Path(args.output_audio).expanduser().resolve()
        if args.output_audio
        else Path("mix_pipeline_outputs").resolve() / "rendered_program.wav"
    )
    output_summary_path = (
        Path(args.output_summary_json).expanduser().resolve()
        if args.output_summary_json
        else output_audio_path.with_name(f"{output_audio_path.stem}_summary.json")
    )

    output_audio_path.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(output_audio_path), result.buffer.samples, result.buffer.sample_rate, subtype="PCM_16")

    summary = RenderOut(
        sample_rate=result.buffer.sample_rate,
        length_ms=result.length_ms,
        skipped_clip_ids=list(result.skipped_clip_ids),
        layout=layout,
        debug=result.debug,
    )
    output_summary_path.parent.mkdir(parents=True, exist_ok=True)
    output_summary_path.write_text(summary.model_dump_json(indent=2), encoding="utf-8")

    print(f"[OK] Rendered program: {output_audio_path}")
    print(f"[OK] Summary: {output_summary_path}")
    print(f"[OK] Items: {len(layout.items)} (+{len(layout.underlay_items)} underlay) | Length: {result.length_ms} ms")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
