from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import requests

from .parsing import ParseContext, ParseResult

logger = logging.getLogger(__name__)

_SCHEMA = """{
  "events": [
    {
      "id": "unique-event-id",
      "title": "string",
      "startDate": "ISO datetime string in user timezone",
      "endDate": "ISO datetime string in user timezone",
      "isAllDay": boolean,
      "recurrence": {"rule": "RRULE string", "pattern": "human readable description"},
      "location": "string or null",
      "description": "string or null",
      "confidence": 0.0-1.0,
      "energyLevel": "low|medium|high or null",
      "resources": ["projector", "room-a"],
      "attendees": [{"email": "string", "displayName": "string"}],
      "metadata": {
        "source": "user_input",
        "priority": "low|medium|high|urgent",
        "category": "work|personal|meeting|break|focus|other",
        "tags": ["tag1", "tag2"]
      }
    }
  ],
  "message": "Human-friendly confirmation message",
  "needsClarification": boolean,
  "clarificationQuestions": ["question1"],
  "suggestions": ["suggestion1"],
  "warnings": ["warning1"]
}"""

_RULES = """PARSING RULES:

1. DATE/TIME HANDLING:
   - Handle relative dates: "today", "tomorrow", "next week", "this Friday"
   - Parse absolute dates: "January 15th", "Dec 25, 2024"
   - Recognize time patterns: "2:30 PM", "14:30", "quarter past 3"
   - Handle time ranges: "from 2 to 4 PM", "2-4 PM"
   - Default meeting duration: {default_duration} minutes if not specified
   - All-day events: "all day", "entire day", "whole day"

2. RECURRENCE PATTERNS:
   - "every day" -> FREQ=DAILY
   - "every Tuesday" -> FREQ=WEEKLY;BYDAY=TU
   - "every 2 weeks" -> FREQ=WEEKLY;INTERVAL=2
   - "monthly on the 15th" -> FREQ=MONTHLY;BYMONTHDAY=15
   - "weekdays" -> FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR
   - "every other Monday" -> FREQ=WEEKLY;INTERVAL=2;BYDAY=MO
   - "first Monday of each month" -> FREQ=MONTHLY;BYDAY=MO;BYSETPOS=1
   - "last Friday of the month" -> FREQ=MONTHLY;BYDAY=FR;BYSETPOS=-1

3. LOCATION EXTRACTION:
   - "meeting at Starbucks" -> location: "Starbucks"
   - "call from home" -> location: "Home"
   - "conference room A" -> location: "Conference Room A"
   - "Zoom meeting" -> location: "Zoom"

4. PRIORITY AND CATEGORY DETECTION:
   - "urgent meeting" -> priority: "urgent"
   - "important call" -> priority: "high"
   - "optional check-in" -> priority: "low"
   - "work meeting" -> category: "work"
   - "personal time" -> category: "personal"
   - "focus time" -> category: "focus"
   - "break" -> category: "break"

5. MULTIPLE EVENTS:
   - Handle multiple events in a single input and create separate events for each occurrence

6. CONFIDENCE SCORING:
   - 0.9-1.0: All details clear, no ambiguity
   - 0.7-0.8: Most details clear, minor ambiguity
   - 0.5-0.6: Some details unclear, needs clarification
   - 0.0-0.4: Highly ambiguous, requires user input

Provide high confidence (0.8+) only when all details are clear.
Request clarification for ambiguous inputs.
Do not report conflicts; they are detected separately."""


class ModelTextParser:
    """Text parser backed by an OpenAI-compatible chat completions endpoint."""

    name = "model"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 30.0,
        default_duration_minutes: int = 60,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key:
            raise ValueError("Missing API key for the model parser (set OPENAI_API_KEY)")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.default_duration_minutes = default_duration_minutes
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {api_key}"})

    def build_system_prompt(self, context: ParseContext) -> str:
        tz = ZoneInfo(context.timezone)
        now = context.current_date.astimezone(tz)
        lines = []
        for e in context.existing_events:
            start = e.start.astimezone(tz)
            end = e.end.astimezone(tz)
            where = f" ({e.location})" if e.location else ""
            lines.append(f"- {e.title}: {start:%b} {start.day}, {start:%H:%M} - {end:%H:%M}{where}")
        preferences = asdict(context.preferences) if context.preferences else {}

        return "\n".join(
            [
                "You are an expert calendar assistant that parses natural language into structured calendar events.",
                "",
                f"CURRENT TIMEZONE: {context.timezone}",
                f"CURRENT DATE: {now:%Y-%m-%d}",
                f"CURRENT TIME: {now:%H:%M}",
                "",
                "EXISTING EVENTS:",
                "\n".join(lines) or "No existing events",
                "",
                f"WORKING HOURS: {context.working_hours.start} - {context.working_hours.end}",
                f"USER PREFERENCES: {json.dumps(preferences)}",
                "",
                "Parse user input and extract calendar events with this JSON structure:",
                _SCHEMA,
                "",
                _RULES.format(default_duration=self.default_duration_minutes),
            ]
        )

    def parse(self, text: str, context: ParseContext) -> ParseResult:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.build_system_prompt(context)},
                {
                    "role": "user",
                    "content": f'Parse this schedule request in timezone {context.timezone}: "{text}"',
                },
            ],
            "temperature": 0.2,
            "max_tokens": 3000,
            "response_format": {"type": "json_object"},
        }
        resp = self._session.post(
            f"{self.base_url}/chat/completions",
            json=body,
            timeout=self.timeout_seconds,
        )
        resp.raise_for_status()
        payload = resp.json()
        content = (payload.get("choices") or [{}])[0].get("message", {}).get("content") or "{}"
        logger.debug("Model response: %s", content)
        return ParseResult.from_dict(json.loads(content))
