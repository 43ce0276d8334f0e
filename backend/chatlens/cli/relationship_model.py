"""Build a member relationship model from an exported chat JSON file.

closeness = mention_weight * mention_norm + temporal_weight * temporal_norm

Writes the full model as JSON plus a Mermaid ``graph LR`` rendering and
prints the strongest relations.
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from chatlens.analysis.mentions import MentionMatrix
from chatlens.analysis.relationship import (
    MODE_LOOKAHEAD,
    MODE_WINDOW,
    RelationshipOptions,
    build_relationship_graph,
    score_pairs,
)
from chatlens.analysis.types import MemberRecord, MessageRecord, round_to
from chatlens.core.config import get_settings
from chatlens.core.logging import setup_logging
from chatlens.utils.time_utils import parse_iso_timestamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_JSON = Path("data") / "member-relationship-model.json"
DEFAULT_OUTPUT_MERMAID = Path("data") / "member-relationship-graph.mmd"
TOP_RELATIONS = 20
PREVIEW_RELATIONS = 10


class InputError(RuntimeError):
    """Unusable input file."""


def _number(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid numeric value: {raw}") from None
    if not math.isfinite(value):
        raise argparse.ArgumentTypeError(f"invalid numeric value: {raw}")
    return value


def _positive(raw: str) -> float:
    value = _number(raw)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0: {raw}")
    return value


def _non_negative(raw: str) -> float:
    value = _number(raw)
    if value < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: {raw}")
    return value


def _integer(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer value: {raw}") from None


def _positive_int(raw: str) -> int:
    value = _integer(raw)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1: {raw}")
    return value


def _non_negative_int(raw: str) -> int:
    value = _integer(raw)
    if value < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: {raw}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatlens-relationship",
        description="Generate a member relationship graph from exported chat JSON.",
    )
    parser.add_argument("--input", default="", help="input JSON (default: first *.json in ./data)")
    parser.add_argument("--output-json", type=Path, default=DEFAULT_OUTPUT_JSON)
    parser.add_argument("--output-mermaid", type=Path, default=DEFAULT_OUTPUT_MERMAID)
    parser.add_argument("--window-seconds", type=_positive, default=300.0)
    parser.add_argument("--decay-seconds", type=_positive, default=120.0)
    parser.add_argument("--mention-weight", type=_non_negative, default=0.6)
    parser.add_argument("--temporal-weight", type=_non_negative, default=0.4)
    parser.add_argument("--min-score", type=_non_negative, default=0.12)
    parser.add_argument("--min-temporal-turns", type=_non_negative_int, default=2)
    parser.add_argument("--top-edges", type=_positive_int, default=80)
    parser.add_argument("--look-ahead", type=_positive_int, default=3)
    parser.add_argument("--mode", choices=(MODE_WINDOW, MODE_LOOKAHEAD), default=MODE_WINDOW)
    parser.add_argument("--include-bots", action="store_true")
    return parser


def options_from_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> RelationshipOptions:
    """Validate cross-flag constraints and renormalize the two weights."""

    weight_sum = args.mention_weight + args.temporal_weight
    if weight_sum <= 0:
        parser.error("--mention-weight + --temporal-weight must be > 0")
    return RelationshipOptions(
        mention_weight=args.mention_weight / weight_sum,
        temporal_weight=args.temporal_weight / weight_sum,
        reciprocity_weight=0.0,
        window_seconds=args.window_seconds,
        decay_seconds=args.decay_seconds,
        look_ahead=args.look_ahead,
        mode=args.mode,
        min_score=args.min_score,
        min_temporal_turns=args.min_temporal_turns,
        top_edges=args.top_edges,
    )


def pick_input_file(raw: str, data_dir: Optional[Path] = None) -> Path:
    if raw:
        return Path(raw)
    data_dir = data_dir or Path.cwd() / "data"
    if not data_dir.is_dir():
        raise InputError(f"data directory not found: {data_dir}")
    files = sorted(path for path in data_dir.iterdir() if path.name.lower().endswith(".json"))
    if not files:
        raise InputError(f"No JSON file found in {data_dir}")
    return files[0]


class _MemberTable:
    """Members keyed by platform id, upserted as authors and mention targets appear."""

    def __init__(self) -> None:
        self.names: Dict[str, str] = {}
        self.bots: Dict[str, bool] = {}
        self.message_counts: Dict[str, int] = {}

    def upsert(self, raw: Any) -> Optional[str]:
        if not isinstance(raw, dict):
            return None
        member_id = str(raw.get("id") or "").strip()
        if not member_id:
            return None
        name = _clean_name(raw.get("nickname")) or _clean_name(raw.get("name")) or member_id
        if member_id not in self.names:
            self.names[member_id] = name
            self.bots[member_id] = bool(raw.get("isBot"))
            self.message_counts[member_id] = 0
        elif self.names[member_id] == member_id:
            self.names[member_id] = name
        return member_id

    def records(self) -> List[MemberRecord]:
        return [
            MemberRecord(
                id=member_id,
                name=name,
                platform_id=member_id,
                message_count=self.message_counts[member_id],
                is_bot=self.bots[member_id],
            )
            for member_id, name in self.names.items()
        ]


def _clean_name(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def build_model(
    payload: Dict[str, Any], options: RelationshipOptions, include_bots: bool, input_path: str
) -> Dict[str, Any]:
    """Turn a parsed export into the relationship model document."""

    messages = payload.get("messages") if isinstance(payload, dict) else None
    if not isinstance(messages, list) or not messages:
        raise InputError("Input JSON has no messages[]")

    members = _MemberTable()
    matrix = MentionMatrix()
    timeline: List[MessageRecord] = []
    for index, message in enumerate(messages):
        if not isinstance(message, dict):
            continue
        author = members.upsert(message.get("author"))
        if author is None or (members.bots[author] and not include_bots):
            continue
        members.message_counts[author] += 1

        ts = parse_iso_timestamp(message.get("timestamp"))
        if ts is not None:
            timeline.append(MessageRecord(id=index, sender_id=author, ts=ts))

        seen: set = set()
        for raw_target in message.get("mentions") or []:
            target = members.upsert(raw_target)
            if target is None or target == author or target in seen:
                continue
            if members.bots[target] and not include_bots:
                continue
            seen.add(target)
            matrix.add(author, target)

    timeline.sort(key=lambda record: (record.ts, record.id))
    scored = score_pairs(timeline, matrix, options)
    records = [record for record in members.records() if include_bots or not record.is_bot]
    graph = build_relationship_graph(scored.pairs, records, options)

    return {
        "meta": {
            "input_path": input_path,
            "generated_at": utc_now().isoformat(),
            "message_count": len(messages),
            "timeline_count": len(timeline),
            "member_count": len(members.names),
            "include_bots": include_bots,
            "options": {
                **options.to_dict(),
                "mention_weight": round_to(options.mention_weight, 4),
                "temporal_weight": round_to(options.temporal_weight, 4),
            },
            "date_range": payload.get("dateRange"),
            "guild": payload.get("guild"),
            "channel": payload.get("channel"),
        },
        "stats": {**asdict(graph.stats), "kept_node_count": len(graph.nodes)},
        "nodes": [asdict(node) for node in graph.nodes],
        "edges": [asdict(edge) for edge in graph.edges],
        "communities": [asdict(community) for community in graph.communities],
        "top_relations": [asdict(edge) for edge in graph.edges[:TOP_RELATIONS]],
    }


def _escape_label(label: str) -> str:
    return str(label).replace('"', "'")


def build_mermaid(model: Dict[str, Any]) -> str:
    node_ids = {node["id"]: f"n{index}" for index, node in enumerate(model["nodes"], start=1)}
    lines = [
        "%% Generated by chatlens-relationship",
        "%% closeness = mention_weight * mention_norm + temporal_weight * temporal_norm",
        "graph LR",
    ]
    for node in model["nodes"]:
        label = f"{_escape_label(node['name'])} | msg:{node['message_count']} | deg:{node['degree']}"
        lines.append(f'  {node_ids[node["id"]]}["{label}"]')
    for edge in model["edges"]:
        source = node_ids.get(edge["source_id"])
        target = node_ids.get(edge["target_id"])
        if not source or not target:
            continue
        label = f"S:{edge['value']} @:{edge['mention_count']} T:{edge['temporal_turns']}"
        lines.append(f'  {source} ---|"{label}"| {target}')
    return "\n".join(lines) + "\n"


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    options = options_from_args(parser, args)
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_content_max_chars)

    try:
        input_path = pick_input_file(args.input)
        payload = json.loads(input_path.read_text(encoding="utf-8"))
        model = build_model(payload, options, args.include_bots, str(input_path))
    except (InputError, OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    _write(args.output_json, json.dumps(model, ensure_ascii=False, indent=2))
    _write(args.output_mermaid, build_mermaid(model))
    logger.debug("Relationship model written for %s", input_path)

    print(f"Input: {input_path}")
    print(f"Output JSON: {args.output_json}")
    print(f"Output Mermaid: {args.output_mermaid}")
    print(
        f"Members: {model['meta']['member_count']}, Messages: {model['meta']['message_count']}, "
        f"Nodes: {model['stats']['kept_node_count']}, Edges: {model['stats']['kept_edges']}"
    )
    print("Top relations:")
    for rank, edge in enumerate(model["top_relations"][:PREVIEW_RELATIONS], start=1):
        print(
            f"{rank:02d}. {edge['source']} <-> {edge['target']} | score={edge['value']} "
            f"| @={edge['mention_count']} | temporal={edge['temporal_turns']}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
