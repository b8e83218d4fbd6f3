# vibe_rooms/report.py
"""
Final report for a finished room: flow DAG, participant scorecards and
collaboration metrics. Read-only; everything is recomputed from the stored
history on each call.
"""

import logging
import math
from typing import Any, Dict, List, Set

from vibe_rooms.event_store import EventStore
from vibe_rooms.models import Participant, PromptAnalysis, PromptEvent, StoredSpec

logger = logging.getLogger("vibe_rooms")

HIGH_CONFIDENCE = 0.7


def count_player_contributions(events: List[PromptEvent]) -> Dict[str, float]:
    """Share of the batch for the first two distinct participants."""
    if not events:
        return {"percentA": 50.0, "percentB": 50.0}

    player_ids = list(dict.fromkeys(e.participant_id for e in events))
    if len(player_ids) == 1:
        return {"percentA": 100.0, "percentB": 0.0}

    player_a, player_b = player_ids[0], player_ids[1]
    count_a = sum(1 for e in events if e.participant_id == player_a)
    count_b = sum(1 for e in events if e.participant_id == player_b)
    total = count_a + count_b
    return {"percentA": count_a / total * 100, "percentB": count_b / total * 100}


def build_flow_tree(
    events: List[PromptEvent],
    analyses: List[PromptAnalysis],
    specs: List[StoredSpec],
) -> Dict[str, List[Dict[str, Any]]]:
    nodes: List[Dict[str, Any]] = []
    edges: List[Dict[str, Any]] = []
    batches: Dict[str, List[PromptEvent]] = {}

    for analysis in analyses:
        covered = set(analysis.prompt_event_ids)
        batch = [e for e in events if e.id in covered]
        batches[analysis.id] = batch
        participant_ids = list(dict.fromkeys(e.participant_id for e in batch))
        timestamp = analysis.created_at.isoformat()
        analysis_json = analysis.analysis.to_json_dict()

        nodes.append({
            "id": f"batch-{analysis.id}",
            "type": "prompt_batch",
            "timestamp": timestamp,
            "participantIds": participant_ids,
            "data": {
                "eventCount": len(batch),
                "events": [e.to_json_dict() for e in batch],
                "analysis": analysis_json,
            },
        })
        nodes.append({
            "id": f"analysis-{analysis.id}",
            "type": "analysis",
            "timestamp": timestamp,
            "participantIds": participant_ids,
            "data": {
                "conflicts": analysis_json["conflicts"],
                "additive": analysis_json["additive"],
            },
        })

        split = count_player_contributions(batch)
        edges.append({
            "source": f"batch-{analysis.id}",
            "target": f"analysis-{analysis.id}",
            "value": len(batch),
            **split,
        })

    for spec in specs:
        batch = batches.get(spec.analysis_id) if spec.analysis_id else None
        if batch is None:
            continue
        nodes.append({
            "id": f"spec-{spec.id}",
            "type": "design_spec",
            "timestamp": spec.created_at.isoformat(),
            "participantIds": list(dict.fromkeys(e.participant_id for e in batch)),
            "data": {"specHash": spec.spec_hash},
        })
        edges.append({
            "source": f"analysis-{spec.analysis_id}",
            "target": f"spec-{spec.id}",
            "value": len(batch),
            **count_player_contributions(batch),
        })

    return {"nodes": nodes, "edges": edges}


def calculate_player_scorecards(
    events: List[PromptEvent],
    analyses: List[PromptAnalysis],
    participants: List[Participant],
) -> List[Dict[str, Any]]:
    scorecards = []
    for participant in participants:
        own_ids = {e.id for e in events if e.participant_id == participant.id}

        # sets: a prompt seen by several analyses still counts once
        accepted: Set[str] = set()
        additive: Set[str] = set()
        conflicted: Set[str] = set()
        won: Set[str] = set()

        for stored in analyses:
            result = stored.analysis
            accepted |= own_ids & set(result.prioritized_prompts)
            for group in result.additive:
                additive |= own_ids & set(group.prompt_ids)
            for conflict in result.conflicts:
                hits = own_ids & set(conflict.prompt_ids)
                conflicted |= hits
                if conflict.winner in hits:
                    won.add(conflict.winner)

        total = len(own_ids)
        scorecards.append({
            "participantId": participant.id,
            "displayName": participant.display_name,
            "color": participant.color,
            "totalPrompts": total,
            "acceptedPrompts": len(accepted),
            "acceptanceRate": (len(accepted) / total * 100) if total else 0.0,
            "additivePrompts": len(additive),
            "conflictedPrompts": len(conflicted),
            "wonConflicts": len(won),
            "dominantAreas": [],
        })
    return scorecards


def contribution_balance(prompt_counts: List[int]) -> float:
    """100 - 100 * coefficient of variation of the per-participant counts, floored at 0."""
    if not prompt_counts:
        return 0.0
    mean = sum(prompt_counts) / len(prompt_counts)
    if mean <= 0:
        return 100.0
    variance = sum((c - mean) ** 2 for c in prompt_counts) / len(prompt_counts)
    return max(0.0, 100.0 - math.sqrt(variance) / mean * 100.0)


def calculate_collaboration_metrics(
    events: List[PromptEvent],
    analyses: List[PromptAnalysis],
    participants: List[Participant],
    scorecards: List[Dict[str, Any]],
) -> Dict[str, Any]:
    if len(participants) < 2:
        return {
            "score": 0,
            "crossPollinationScore": 0.0,
            "conflictResolutionRate": 0.0,
            "contributionBalance": 0.0,
            "explanation": "Not enough participants to measure collaboration",
        }

    author = {e.id: e.participant_id for e in events}

    total_groups = 0
    mixed_groups = 0
    total_conflicts = 0
    confident = 0
    for stored in analyses:
        for group in stored.analysis.additive:
            total_groups += 1
            authors = {author[pid] for pid in group.prompt_ids if pid in author}
            if len(authors) > 1:
                mixed_groups += 1
        for conflict in stored.analysis.conflicts:
            total_conflicts += 1
            if conflict.confidence > HIGH_CONFIDENCE:
                confident += 1

    cross_pollination = (mixed_groups / total_groups * 100) if total_groups else 0.0
    resolution_rate = (confident / total_conflicts * 100) if total_conflicts else 100.0
    balance = contribution_balance([s["totalPrompts"] for s in scorecards])

    score = round(cross_pollination * 0.4 + resolution_rate * 0.3 + balance * 0.3)

    if score >= 80:
        explanation = (
            f"Excellent collaboration! Players built on each other's ideas frequently "
            f"({round(cross_pollination)}% of idea groups were shared), resolved conflicts smoothly "
            f"and contributed relatively equally."
        )
    elif score >= 60:
        explanation = (
            f"Good collaboration with some areas for improvement. {mixed_groups} out of "
            f"{total_groups} idea groups involved more than one player."
        )
    elif score >= 40:
        explanation = (
            f"Moderate collaboration. Players worked somewhat independently with "
            f"{round(cross_pollination)}% cross-pollination and {round(balance)}% contribution balance."
        )
    else:
        explanation = "Limited collaboration detected. Players mostly worked independently."

    return {
        "score": score,
        "crossPollinationScore": cross_pollination,
        "conflictResolutionRate": resolution_rate,
        "contributionBalance": balance,
        "explanation": explanation,
    }


def dedupe_participants(participants: List[Participant]) -> List[Participant]:
    """One participant per display name; input is in join order, so the most recent wins."""
    return list({p.display_name: p for p in participants}.values())


def generate_final_report(store: EventStore, room_id: str) -> Dict[str, Any]:
    logger.info(f"[Report] generating final report for room {room_id}")

    events = store.list_prompt_events(room_id)
    analyses = store.list_analyses(room_id)
    specs = store.list_specs(room_id)
    participants = dedupe_participants(store.list_participants(room_id))

    flow_tree = build_flow_tree(events, analyses, specs)
    scorecards = calculate_player_scorecards(events, analyses, participants)
    collaboration = calculate_collaboration_metrics(events, analyses, participants, scorecards)

    return {
        "flowTree": flow_tree,
        "scorecards": scorecards,
        "collaboration": collaboration,
        "rawData": {
            "totalPrompts": len(events),
            "totalAnalyses": len(analyses),
            "totalSpecs": len(specs),
            "participants": [
                {"id": p.id, "name": p.display_name, "color": p.color} for p in participants
            ],
        },
        "finalSpec": specs[-1].spec.content() if specs else None,
    }
