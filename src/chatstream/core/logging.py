"""
Session-scoped conversation logging for chatstream.

Records outgoing stream requests, finished turns and errors per chat session.
"""

import json
import asyncio
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional
import aiofiles
import logging


class ConversationLogger:
    """
    Writes JSONL records to session-specific directories:
    {log_dir}/chatstream-core/{session_id}/{kind}_YYYY-MM-DD.jsonl
    """

    def __init__(self, base_log_dir: Path):
        self.base_log_dir = Path(base_log_dir)
        self.core_log_dir = self.base_log_dir / "chatstream-core"
        self._write_locks: Dict[str, asyncio.Lock] = {}

    def _get_session_dir(self, session_id: str) -> Path:
        return self.core_log_dir / session_id

    def _get_write_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._write_locks:
            self._write_locks[session_id] = asyncio.Lock()
        return self._write_locks[session_id]

    async def _append(self, session_id: str, kind: str, entry: Dict[str, Any]) -> None:
        try:
            session_dir = self._get_session_dir(session_id)
            session_dir.mkdir(parents=True, exist_ok=True)

            today = datetime.now().strftime("%Y-%m-%d")
            log_file = session_dir / f"{kind}_{today}.jsonl"

            log_entry = {
                "timestamp": datetime.now().isoformat(),
                "session": session_id,
                **entry,
            }

            async with self._get_write_lock(session_id):
                async with aiofiles.open(log_file, 'a', encoding='utf-8') as f:
                    await f.write(json.dumps(log_entry, ensure_ascii=False) + '\n')

        except Exception as e:
            # Fallback to standard logging if file write fails
            logging.error(f"Failed to write {kind} log for session {session_id}: {e}")

    async def log_request(self, session_id: str, messages: List[Dict[str, Any]]) -> None:
        """
        Log the context sent to the chat endpoint for one turn.

        Args:
            session_id: Chat session the turn belongs to
            messages: Wire messages ({role, content}) in order
        """
        await self._append(session_id, "requests", {
            "message_count": len(messages),
            "messages": messages,
        })

    async def log_turn(self, session_id: str, turn_data: Dict[str, Any]) -> None:
        """
        Log how a turn ended.

        Args:
            session_id: Chat session the turn belongs to
            turn_data: Outcome, reply length, delta count and similar details
        """
        await self._append(session_id, "turns", turn_data)

    async def log_error(
        self,
        session_id: str,
        error_type: str,
        error_message: str,
        error_details: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log errors for a specific session.

        Args:
            session_id: Chat session identifier
            error_type: Type of error (e.g., "stream_error", "pipeline_error")
            error_message: Human-readable error message
            error_details: Additional error context
        """
        await self._append(session_id, "errors", {
            "error_type": error_type,
            "error_message": error_message,
            "error_details": error_details or {},
        })


DEFAULT_LOG_DIR = Path.home() / ".chatstream" / "logs"

# Global logger instance
_conversation_logger: Optional[ConversationLogger] = None


def get_conversation_logger(base_log_dir: Optional[Path] = None) -> ConversationLogger:
    """Get or create the global conversation logger instance."""
    global _conversation_logger
    if _conversation_logger is None:
        _conversation_logger = ConversationLogger(base_log_dir or DEFAULT_LOG_DIR)
    return _conversation_logger
