"""
Shot Detector
Uses Google Gemini to propose clip-worthy shots in a video
"""

import asyncio
import hashlib
import json
import re
from typing import Any, List

from ..config import get_settings
from ..models.shot import Shot
from ..utils.logger import get_logger

logger = get_logger()

_CODE_FENCE = re.compile(r"```(?:json)?\s*|```")

# Returned whenever the model is unavailable or its output cannot be used
SAMPLE_SHOTS = [
    {
        "timestamp": "00:00",
        "duration": "9s",
        "description": "Opening hook - Strong visual or audio element that immediately grabs attention in the first few seconds.",
        "score": 85,
        "tags": ["#viral", "#trending", "#shorts", "#fyp", "#explore"],
    },
    {
        "timestamp": "00:15",
        "duration": "12s",
        "description": "Key moment - Pivotal scene with high energy or emotional impact that keeps viewers engaged.",
        "score": 90,
        "tags": ["#viralvideo", "#trending", "#mustwatch", "#amazing", "#wow"],
    },
    {
        "timestamp": "00:30",
        "duration": "11s",
        "description": "Climax - The most intense or surprising moment that creates the biggest reaction.",
        "score": 95,
        "tags": ["#viral", "#insane", "#omg", "#crazy", "#unbelievable"],
    },
    {
        "timestamp": "00:45",
        "duration": "10s",
        "description": "Resolution - Satisfying conclusion with clear payoff that encourages likes and shares.",
        "score": 88,
        "tags": ["#satisfying", "#ending", "#perfect", "#awesome", "#share"],
    },
]

ANALYSIS_PROMPT = """Analyze this video and identify 4-6 potential viral short-form clips suitable for TikTok, Instagram Reels, or YouTube Shorts.

For each viral moment, provide:
1. Timestamp (MM:SS format, e.g., "00:15")
2. Duration (8-15 seconds optimal, can go up to 20s for exceptional moments)
3. Description (engaging description of what makes this moment viral-worthy)
4. Viral Score (0-100, how likely this will go viral)
5. Hashtags (5-7 trending hashtags relevant to the moment)

Focus on moments that have:
- Strong hook in the first 2 seconds (action, surprise, or intrigue)
- Clear narrative arc that completes within 8-15 seconds
- High energy or emotional peaks
- Satisfying or relatable payoff

Return your response as a JSON array of objects with this exact structure:
[
  {
    "timestamp": "00:15",
    "duration": "12s",
    "description": "...",
    "score": 92,
    "tags": ["#tag1", "#tag2", "#tag3"]
  }
]

IMPORTANT: Return ONLY the JSON array, no other text."""


class ShotDetector:
    """Detects candidate shots in video content using Gemini AI"""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()
        self._client = None

    def _ensure_client(self) -> bool:
        """Lazy load the Gemini client; False when no key is configured"""
        if self._client is not None:
            return True

        if not self.settings.gemini_api_key:
            return False

        try:
            from google import genai
        except ImportError:
            logger.error("google-genai not installed")
            raise

        self._client = genai.Client(api_key=self.settings.gemini_api_key)
        logger.info("Gemini client initialized")
        return True

    async def analyze(self, video_bytes: bytes, mime_type: str) -> List[Shot]:
        """
        Propose shots for a video

        Never raises for model problems: a missing key, an API error or
        unparseable output all yield the sample shots.
        """
        id_prefix = f"shot_{hashlib.sha1(video_bytes).hexdigest()[:8]}"

        if not self._ensure_client():
            logger.warning("No Gemini API key found. Using sample shots.")
            return self.sample_shots(id_prefix)

        logger.info(f"Analyzing video with Gemini ({len(video_bytes) / 1024 / 1024:.2f} MB)...")
        try:
            from google.genai import types

            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self._client.models.generate_content(
                    model=self.settings.gemini_model,
                    contents=[
                        types.Part.from_bytes(data=video_bytes, mime_type=mime_type),
                        ANALYSIS_PROMPT,
                    ],
                    config={
                        "temperature": 0.7,
                        "top_k": 40,
                        "top_p": 0.95,
                        "max_output_tokens": 2048,
                        "response_mime_type": "application/json",
                    }
                )
            )
        except Exception as exc:
            logger.error(f"Gemini analysis error: {exc}")
            logger.warning("Falling back to sample shots")
            return self.sample_shots(id_prefix)

        text = getattr(response, "text", None) if response else None
        if not text:
            logger.warning("No text response from Gemini. Using sample shots.")
            return self.sample_shots(id_prefix)

        shots = self.parse_response(text, id_prefix)
        if not shots:
            logger.warning("Unusable Gemini output. Using sample shots.")
            return self.sample_shots(id_prefix)

        logger.info(f"Analysis complete. Found {len(shots)} shots")
        return shots

    def parse_response(self, response_text: str, id_prefix: str = "shot") -> List[Shot]:
        """Shots from model output; empty when the output is not usable JSON"""
        cleaned = _CODE_FENCE.sub("", response_text).strip()
        try:
            data: Any = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            logger.error(f"Failed to parse Gemini response: {exc}")
            return []

        if isinstance(data, dict):
            data = data.get("shots") or data.get("moments") or []
        if not isinstance(data, list):
            return []

        shots = []
        for index, item in enumerate(data, start=1):
            if not isinstance(item, dict):
                continue
            try:
                shots.append(Shot.from_foreign({**item, "id": f"{id_prefix}_{index}"}))
            except ValueError as exc:
                logger.warning(f"Skipping malformed shot {index}: {exc}")
        return shots

    @staticmethod
    def sample_shots(id_prefix: str = "shot") -> List[Shot]:
        return [
            Shot(id=f"{id_prefix}_{index}", **sample)
            for index, sample in enumerate(SAMPLE_SHOTS, start=1)
        ]
