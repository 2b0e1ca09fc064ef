"""
tools_service.py — Tool declarations and execution for the coach agent.
Every tool reads or writes the user's own recovery data. Declarations are
provider-neutral JSON-schema dicts; providers wrap them in their own format.
"""

import json
import logging
from datetime import datetime, timezone, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import MILESTONE_DAYS
from errors import ToolExecutionError
from models.biometric_log import BiometricLog
from models.check_in import CheckIn
from models.coping_activity import CopingActivity
from models.goal import Goal
from models.journal import JournalEntry
from models.observability_log import ObservabilityLogEntry
from models.profile import Profile
from services.crisis_detector import SAFETY_RESOURCES
from services.observability import ObservabilityLogger

logger = logging.getLogger(__name__)


READ_TOOLS = (
    "get_user_progress",
    "get_recent_moods",
    "get_active_goals",
    "get_recent_journal_entries",
    "get_biometric_data",
    "get_conversation_context",
    "suggest_coping_activity",
)
WRITE_TOOLS = (
    "create_goal",
    "create_check_in",
    "create_journal_entry",
    "complete_goal",
    "log_coping_activity",
)
ACTION_TOOLS = ("create_action_plan", "log_intervention")
SAFETY_TOOLS = ("escalate_crisis",)

MOOD_SCORES = {"great": 5, "good": 4, "okay": 3, "struggling": 2, "crisis": 1}

_EMPTY = {"type": "object", "properties": {}, "required": []}

TOOL_DECLARATIONS = {
    "get_user_progress": {
        "description": "Get the user's sobriety progress: days sober, streaks, level, XP and next milestone. ALWAYS call this before answering questions about progress or days sober.",
        "parameters": _EMPTY,
    },
    "get_recent_moods": {
        "description": "Get check-ins from the last 7 days: mood distribution, average urge intensity, trend and recent notes.",
        "parameters": _EMPTY,
    },
    "get_active_goals": {
        "description": "Get the user's active (not completed) goals and their progress.",
        "parameters": _EMPTY,
    },
    "get_recent_journal_entries": {
        "description": "Get the user's five most recent journal entries with excerpts and sentiment.",
        "parameters": _EMPTY,
    },
    "get_biometric_data": {
        "description": "Get wearable data from the last 7 days: sleep, steps, stress and heart rate averages.",
        "parameters": _EMPTY,
    },
    "get_conversation_context": {
        "description": "Get summaries of the user's recent conversations with the coach, for continuity.",
        "parameters": _EMPTY,
    },
    "suggest_coping_activity": {
        "description": "Suggest coping activities for the user's current stress level, including ones that helped before.",
        "parameters": {
            "type": "object",
            "properties": {
                "stress_level": {"type": "string", "enum": ["low", "medium", "high", "crisis"]},
            },
            "required": ["stress_level"],
        },
    },
    "create_goal": {
        "description": "Create a recovery goal. Only call once the user has given the goal details.",
        "parameters": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "description": {"type": "string"},
                "target_days": {"type": "number"},
            },
            "required": ["title"],
        },
    },
    "create_check_in": {
        "description": "Log a mood check-in. Only call once the user has shared their mood.",
        "parameters": {
            "type": "object",
            "properties": {
                "mood": {"type": "string", "enum": list(MOOD_SCORES)},
                "urge_intensity": {"type": "number", "description": "0 = no urge, 10 = extreme"},
                "notes": {"type": "string"},
            },
            "required": ["mood"],
        },
    },
    "create_journal_entry": {
        "description": "Save a journal entry with the content the user provided.",
        "parameters": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "content": {"type": "string"},
            },
            "required": ["content"],
        },
    },
    "complete_goal": {
        "description": "Mark an active goal as completed. The title is fuzzy-matched.",
        "parameters": {
            "type": "object",
            "properties": {"goal_title": {"type": "string"}},
            "required": ["goal_title"],
        },
    },
    "log_coping_activity": {
        "description": "Record that the user used a coping activity.",
        "parameters": {
            "type": "object",
            "properties": {
                "activity_name": {"type": "string"},
                "category": {"type": "string", "enum": ["breathing", "physical", "mindfulness", "social", "creative", "other"]},
                "helpful": {"type": "boolean"},
            },
            "required": ["activity_name", "category"],
        },
    },
    "create_action_plan": {
        "description": "Break a larger recovery goal into ordered steps.",
        "parameters": {
            "type": "object",
            "properties": {
                "goal_description": {"type": "string"},
                "steps": {"type": "array", "items": {"type": "string"}},
                "timeline_days": {"type": "number"},
            },
            "required": ["goal_description", "steps"],
        },
    },
    "log_intervention": {
        "description": "Record that you gave the user significant proactive support.",
        "parameters": {
            "type": "object",
            "properties": {
                "intervention_type": {"type": "string"},
                "was_helpful": {"type": "boolean"},
            },
            "required": ["intervention_type"],
        },
    },
    "escalate_crisis": {
        "description": "CRITICAL SAFETY TOOL: call immediately if the user expresses suicidal thoughts, self-harm intentions or a severe crisis.",
        "parameters": {
            "type": "object",
            "properties": {
                "crisis_type": {"type": "string", "enum": ["suicidal_ideation", "self_harm", "severe_relapse", "mental_health_emergency", "other"]},
                "severity": {"type": "string", "enum": ["high", "critical"]},
                "user_statement": {"type": "string"},
            },
            "required": ["crisis_type", "severity"],
        },
    },
}

COPING_SUGGESTIONS = {
    "low": [
        "Take a 10-minute mindful walk outside",
        "Practice gratitude journaling",
        "Do some light stretching or yoga",
        "Call a friend or family member",
    ],
    "medium": [
        "Try the 4-7-8 breathing technique for 5 minutes",
        "Use a guided meditation",
        "Write in your journal about how you're feeling",
        "Go for a jog or do 20 minutes of exercise",
    ],
    "high": [
        "Use the HALT check: are you Hungry, Angry, Lonely, or Tired?",
        "Call your sponsor or support person now",
        "Do the 5-4-3-2-1 grounding exercise",
        "Remove yourself from the triggering situation",
    ],
    "crisis": [
        "Please call or text 988 (Suicide & Crisis Lifeline) right now",
        "Reach out to your emergency contact",
        "Go to a safe place with someone you trust",
        "This moment will pass; you are stronger than this urge",
    ],
}


def classify_tool(name: str) -> str:
    """'read' or 'write' for metrics; anything else is 'other'."""
    if name in READ_TOOLS:
        return "read"
    if name in WRITE_TOOLS:
        return "write"
    return "other"


def declarations_for(names) -> list[dict]:
    return [{"name": n, **TOOL_DECLARATIONS[n]} for n in names if n in TOOL_DECLARATIONS]


class ToolsService:
    """Executes tool calls for one user against the database."""

    def __init__(self, db: Session, user_id: int, intervention_service=None):
        self.db = db
        self.user_id = user_id
        self.intervention_service = intervention_service

    # ------------------------------------------------------------------
    async def execute(self, name: str, args: dict | None = None) -> dict:
        """Run a tool and return its JSON-serializable result.

        Raises ToolExecutionError for unknown tools, missing arguments, or
        database failures.
        """
        args = args or {}
        if name not in TOOL_DECLARATIONS:
            raise ToolExecutionError(f"Unknown tool: {name}", tool_name=name)
        missing = [r for r in TOOL_DECLARATIONS[name]["parameters"]["required"] if args.get(r) in (None, "")]
        if missing:
            raise ToolExecutionError(f"Missing required arguments: {', '.join(missing)}", tool_name=name)

        handler = getattr(self, f"_{name}")
        try:
            return handler(**args) if name != "escalate_crisis" else await handler(**args)
        except ToolExecutionError:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ToolExecutionError("Database error", tool_name=name, details=str(e))
        except TypeError as e:
            # Unexpected argument names from the model
            raise ToolExecutionError("Invalid arguments", tool_name=name, details=str(e))

    # === READ TOOLS ===================================================
    def _profile(self) -> Profile | None:
        return self.db.query(Profile).filter_by(id=self.user_id).first()

    @staticmethod
    def _days_sober(profile: Profile | None) -> int:
        if not profile or not profile.sobriety_start_date:
            return 0
        return max(0, (datetime.now(timezone.utc).date() - profile.sobriety_start_date).days)

    def _get_user_progress(self) -> dict:
        profile = self._profile()
        days_sober = self._days_sober(profile)
        next_milestone = next((m for m in sorted(MILESTONE_DAYS) if m > days_sober), None)
        return {
            "days_sober": days_sober,
            "current_streak": (profile.current_streak if profile else 0) or 0,
            "longest_streak": (profile.longest_streak if profile else 0) or 0,
            "level": (profile.level if profile else 1) or 1,
            "xp": (profile.xp if profile else 0) or 0,
            "addiction_type": (profile.addiction_type if profile else None) or "addiction",
            "next_milestone": next_milestone,
            "days_to_milestone": next_milestone - days_sober if next_milestone else None,
        }

    def _get_recent_moods(self) -> dict:
        week_ago = datetime.now(timezone.utc) - timedelta(days=7)
        check_ins = (
            self.db.query(CheckIn)
            .filter(CheckIn.user_id == self.user_id, CheckIn.created_at >= week_ago)
            .order_by(CheckIn.created_at.desc(), CheckIn.id.desc())
            .all()
        )
        distribution: dict[str, int] = {}
        for ci in check_ins:
            distribution[ci.mood] = distribution.get(ci.mood, 0) + 1

        avg_urge = (
            round(sum(ci.urge_intensity or 0 for ci in check_ins) / len(check_ins), 1)
            if check_ins else 0
        )
        trend = "insufficient_data"
        if len(check_ins) >= 2:
            recent = MOOD_SCORES.get(check_ins[0].mood, 3)
            older = MOOD_SCORES.get(check_ins[-1].mood, 3)
            trend = "improving" if recent > older else "declining" if recent < older else "stable"

        return {
            "total_check_ins": len(check_ins),
            "mood_distribution": distribution,
            "average_urge_intensity": avg_urge,
            "recent_notes": [ci.notes for ci in check_ins[:3] if ci.notes],
            "trend": trend,
            "last_check_in": check_ins[0].created_at.isoformat() if check_ins else None,
        }

    def _get_active_goals(self) -> dict:
        goals = self.db.query(Goal).filter_by(user_id=self.user_id, completed=False).order_by(Goal.id).all()
        today = datetime.now(timezone.utc).date()
        return {
            "active_goals": len(goals),
            "goals": [
                {
                    "title": g.title,
                    "description": g.description,
                    "progress": g.progress or 0,
                    "target_days": g.target_days,
                    "days_remaining": max(0, (g.end_date - today).days) if g.end_date else None,
                }
                for g in goals
            ],
        }

    def _get_recent_journal_entries(self) -> dict:
        entries = (
            self.db.query(JournalEntry)
            .filter_by(user_id=self.user_id)
            .order_by(JournalEntry.created_at.desc(), JournalEntry.id.desc())
            .limit(5)
            .all()
        )
        return {
            "recent_entries": [
                {
                    "title": e.title,
                    "excerpt": e.content[:200] + ("..." if len(e.content) > 200 else ""),
                    "sentiment": e.sentiment_data.get("overall"),
                    "date": e.created_at.isoformat() if e.created_at else None,
                }
                for e in entries
            ],
            "total_entries": len(entries),
        }

    def _get_biometric_data(self) -> dict:
        week_ago = datetime.now(timezone.utc) - timedelta(days=7)
        logs = (
            self.db.query(BiometricLog)
            .filter(BiometricLog.user_id == self.user_id, BiometricLog.logged_at >= week_ago)
            .order_by(BiometricLog.logged_at.desc())
            .all()
        )
        if not logs:
            return {"has_data": False, "message": "No biometric data available. Consider connecting a wearable device."}

        avg_sleep = sum(b.sleep_hours or 0 for b in logs) / len(logs)
        avg_steps = sum(b.steps or 0 for b in logs) / len(logs)
        avg_stress = sum(b.stress_level or 0 for b in logs) / len(logs)

        insights = []
        if avg_sleep < 6:
            insights.append("Sleep seems low. Poor sleep can increase vulnerability to cravings.")
        if avg_stress > 7:
            insights.append("Stress levels are elevated. Consider stress-reduction activities.")
        if avg_steps < 3000:
            insights.append("Activity levels are low. Even short walks can boost mood and reduce cravings.")
        if not insights:
            insights.append("Biometrics look stable. Keep up the healthy habits!")

        latest = logs[0]
        return {
            "has_data": True,
            "average_sleep_hours": round(avg_sleep, 1),
            "average_steps": round(avg_steps),
            "average_stress_level": round(avg_stress, 1),
            "latest": {
                "heart_rate": latest.heart_rate,
                "sleep_hours": latest.sleep_hours,
                "steps": latest.steps,
                "stress_level": latest.stress_level,
            },
            "insights": insights,
        }

    def _get_conversation_context(self) -> dict:
        logs = (
            self.db.query(ObservabilityLogEntry)
            .filter_by(user_id=self.user_id, function_name="chat")
            .order_by(ObservabilityLogEntry.id.desc())
            .limit(5)
            .all()
        )
        return {
            "recent_interactions": [
                {
                    "user_asked": log.input_summary,
                    "ai_helped_with": log.response_summary,
                    "tools_used": json.loads(log.tools_called or "[]"),
                    "when": log.created_at.isoformat() if log.created_at else None,
                }
                for log in logs
            ],
            "context_available": bool(logs),
        }

    def _suggest_coping_activity(self, stress_level: str = "medium") -> dict:
        past = (
            self.db.query(CopingActivity)
            .filter_by(user_id=self.user_id, helpful=True)
            .order_by(CopingActivity.times_used.desc())
            .limit(5)
            .all()
        )
        result = {
            "stress_level": stress_level,
            "suggestions": COPING_SUGGESTIONS.get(stress_level, COPING_SUGGESTIONS["medium"]),
            "past_helpful_activities": [a.activity_name for a in past],
            "crisis_resources": None,
        }
        if stress_level in ("high", "crisis"):
            result["crisis_resources"] = SAFETY_RESOURCES
        return result

    # === WRITE TOOLS ==================================================
    def _create_goal(self, title: str, description: str | None = None, target_days=None) -> dict:
        today = datetime.now(timezone.utc).date()
        target_days = int(target_days) if target_days else None
        goal = Goal(
            user_id=self.user_id,
            title=title,
            description=description,
            target_days=target_days,
            start_date=today,
            end_date=today + timedelta(days=target_days) if target_days else None,
            progress=0,
            completed=False,
        )
        self.db.add(goal)
        self.db.commit()
        self.db.refresh(goal)
        return {"success": True, "message": f'Goal "{title}" has been created!', "goal_id": goal.id}

    def _create_check_in(self, mood: str, urge_intensity=None, notes: str | None = None) -> dict:
        if mood not in MOOD_SCORES:
            raise ToolExecutionError(f"Unknown mood: {mood}", tool_name="create_check_in")
        urge = int(urge_intensity) if urge_intensity is not None else None
        if urge is not None and not 0 <= urge <= 10:
            raise ToolExecutionError("urge_intensity must be between 0 and 10", tool_name="create_check_in")

        check_in = CheckIn(user_id=self.user_id, mood=mood, urge_intensity=urge, notes=notes)
        self.db.add(check_in)
        profile = self._profile()
        if profile:
            profile.last_check_in = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(check_in)

        suffix = f", Urge: {urge}/10" if urge is not None else ""
        return {"success": True, "message": f"Check-in logged! Mood: {mood}{suffix}", "check_in_id": check_in.id}

    def _create_journal_entry(self, content: str, title: str | None = None) -> dict:
        entry = JournalEntry(
            user_id=self.user_id,
            title=title or f"Journal - {datetime.now(timezone.utc).strftime('%b %d, %Y')}",
            content=content,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return {"success": True, "message": "Journal entry saved!", "entry_id": entry.id}

    def _complete_goal(self, goal_title: str) -> dict:
        goals = self.db.query(Goal).filter_by(user_id=self.user_id, completed=False).order_by(Goal.id).all()
        if not goals:
            return {"success": False, "message": "No active goals found."}

        target_words = goal_title.lower().split()
        best, best_score = goals[0], 0
        for goal in goals:
            goal_words = goal.title.lower().split()
            overlap = sum(1 for w in target_words if any(w in gw or gw in w for gw in goal_words))
            if overlap > best_score:
                best, best_score = goal, overlap

        if best_score == 0:
            return {"success": False, "message": f'No active goal matches "{goal_title}".'}

        best.completed = True
        best.progress = 100
        self.db.commit()
        return {"success": True, "message": f'Goal "{best.title}" marked as complete! Great job!'}

    def _log_coping_activity(self, activity_name: str, category: str, helpful=True) -> dict:
        helpful = True if helpful is None else bool(helpful)
        existing = self.db.query(CopingActivity).filter_by(user_id=self.user_id, activity_name=activity_name).first()
        if existing:
            existing.times_used = (existing.times_used or 0) + 1
            existing.helpful = helpful
            self.db.commit()
            return {"success": True, "message": f'Logged "{activity_name}" - you\'ve used this {existing.times_used} times!'}

        self.db.add(CopingActivity(
            user_id=self.user_id,
            activity_name=activity_name,
            category=category,
            helpful=helpful,
            times_used=1,
        ))
        self.db.commit()
        return {"success": True, "message": f'"{activity_name}" has been logged as a coping activity.'}

    # === ACTION / SAFETY TOOLS ========================================
    def _create_action_plan(self, goal_description: str, steps: list, timeline_days=None) -> dict:
        numbered = "\n".join(f"{i + 1}. {s}" for i, s in enumerate(steps))
        return {
            "success": True,
            "goal": goal_description,
            "timeline_days": timeline_days,
            "message": f"Action plan created! Here's your roadmap:\n{numbered}",
            "steps": list(steps),
        }

    def _log_intervention(self, intervention_type: str, was_helpful=None) -> dict:
        ObservabilityLogger(self.db).record(
            user_id=self.user_id,
            function_name="chat",
            input_summary="in-chat support",
            response_summary=f"was_helpful={was_helpful}",
            intervention_triggered=True,
            intervention_type=intervention_type,
        )
        return {"logged": True, "intervention_type": intervention_type}

    async def _escalate_crisis(self, crisis_type: str, severity: str, user_statement: str | None = None) -> dict:
        ObservabilityLogger(self.db).record(
            user_id=self.user_id,
            function_name="crisis-escalation",
            input_summary=user_statement or "Crisis detected",
            response_summary=f"Crisis type: {crisis_type}, Severity: {severity}",
            crisis_detected=True,
            intervention_triggered=True,
            intervention_type="crisis_escalation",
        )
        if self.intervention_service is not None:
            await self.intervention_service.create_crisis_intervention(self.user_id, crisis_type, severity)
        return {
            "escalated": True,
            "crisis_type": crisis_type,
            "resources": SAFETY_RESOURCES,
            "message": "Professional support is available 24/7.",
        }
