"""External side-effecting operations that tools delegate to.

The tool layer only depends on the :class:`ToolCollaborators` protocol.
:class:`LocalCollaborators` is a straightforward local implementation;
applications swap in their own (sandboxed shell, remote search, ...).
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from pydantic_ai import Agent

logger = logging.getLogger(__name__)

WebSearchFn = Callable[[str, int, str], Awaitable[Any]]
BookmarkSearchFn = Callable[[str, int], Awaitable[List[Any]]]


class ToolCollaborators(Protocol):
    """Operations the core tools are wired to."""

    async def run_shell(
        self, command: str, workdir: Optional[str] = None, timeout_ms: Optional[int] = None
    ) -> Dict[str, Any]:
        """Run ``command`` and return ``stdout``, ``stderr`` and ``exit_code``."""

    async def read_file(
        self, path: str, start_line: Optional[int] = None, end_line: Optional[int] = None
    ) -> str:
        """Return file contents, optionally a 1-indexed inclusive line range."""

    async def write_file(self, path: str, content: str, append: bool = False) -> str:
        """Write ``content`` and return the resolved path."""

    async def list_directory(
        self, path: str, depth: int = 1, include_hidden: bool = False
    ) -> List[Dict[str, Any]]:
        """Return entries with ``path``, ``type`` and ``size``."""

    async def search_files(
        self,
        pattern: str,
        path: Optional[str] = None,
        search_type: str = "filename",
        max_results: int = 100,
    ) -> List[str]:
        """Return matching file paths."""

    async def web_search(
        self, query: str, num_results: int = 5, search_type: str = "general"
    ) -> Any:
        """Return search results."""

    async def invoke_agent(
        self, agent_id: str, message: str, context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Run a sub-agent and return its answer."""

    async def search_bookmarks(self, query: str, limit: int = 10) -> List[Any]:
        """Return bookmarked messages matching ``query``."""


class AgentInvoker:
    """Invoke named ``pydantic_ai`` agents as sub-agents."""

    def __init__(self, agents: Optional[Dict[str, Agent]] = None) -> None:
        self._agents: Dict[str, Agent] = dict(agents or {})

    def register(self, agent_id: str, agent: Agent) -> None:
        self._agents[agent_id] = agent

    def agent_ids(self) -> List[str]:
        return sorted(self._agents)

    async def __call__(
        self, agent_id: str, message: str, context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        agent = self._agents.get(agent_id)
        if agent is None:
            return {
                "success": False,
                "agent_id": agent_id,
                "error": f"Agent {agent_id} not found. Available: {', '.join(self.agent_ids()) or 'none'}",
            }
        prompt = message
        if context:
            prompt = f"{message}\n\nContext:\n{json.dumps(context, indent=2, default=str)}"
        logger.info(f"Invoking sub-agent {agent_id}")
        result = await agent.run(prompt)
        output = result.output if hasattr(result, "output") else str(result)
        return {"success": True, "agent_id": agent_id, "output": output}


class LocalCollaborators:
    """Run tools against the local machine, relative to ``working_directory``."""

    def __init__(
        self,
        working_directory: str | Path = ".",
        web_search: Optional[WebSearchFn] = None,
        agent_invoker: Optional[AgentInvoker] = None,
        bookmark_search: Optional[BookmarkSearchFn] = None,
    ) -> None:
        self.working_directory = Path(working_directory).expanduser()
        self._web_search = web_search
        self._agent_invoker = agent_invoker
        self._bookmark_search = bookmark_search

    def _resolve(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.working_directory / candidate
        return candidate

    async def run_shell(
        self, command: str, workdir: Optional[str] = None, timeout_ms: Optional[int] = None
    ) -> Dict[str, Any]:
        cwd = self._resolve(workdir) if workdir else self.working_directory
        timeout = (timeout_ms or 30000) / 1000
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise TimeoutError(f"Command timed out after {timeout:g}s: {command}")
        return {
            "stdout": stdout.decode(errors="replace"),
            "stderr": stderr.decode(errors="replace"),
            "exit_code": proc.returncode,
        }

    async def read_file(
        self, path: str, start_line: Optional[int] = None, end_line: Optional[int] = None
    ) -> str:
        text = await asyncio.to_thread(self._resolve(path).read_text)
        if start_line is None and end_line is None:
            return text
        lines = text.splitlines()
        start = max((start_line or 1) - 1, 0)
        end = end_line if end_line is not None else len(lines)
        return "\n".join(lines[start:end])

    async def write_file(self, path: str, content: str, append: bool = False) -> str:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "a" if append else "w") as f:
                f.write(content)

        await asyncio.to_thread(_write)
        return str(target)

    async def list_directory(
        self, path: str, depth: int = 1, include_hidden: bool = False
    ) -> List[Dict[str, Any]]:
        root = self._resolve(path)

        def _walk(directory: Path, level: int) -> List[Dict[str, Any]]:
            entries: List[Dict[str, Any]] = []
            for child in sorted(directory.iterdir()):
                if not include_hidden and child.name.startswith("."):
                    continue
                is_dir = child.is_dir()
                entries.append(
                    {
                        "path": str(child.relative_to(root)),
                        "type": "directory" if is_dir else "file",
                        "size": 0 if is_dir else child.stat().st_size,
                    }
                )
                if is_dir and level < depth:
                    entries.extend(_walk(child, level + 1))
            return entries

        return await asyncio.to_thread(_walk, root, 1)

    async def search_files(
        self,
        pattern: str,
        path: Optional[str] = None,
        search_type: str = "filename",
        max_results: int = 100,
    ) -> List[str]:
        root = self._resolve(path) if path else self.working_directory

        def _search() -> List[str]:
            matches: List[str] = []
            regex = re.compile(pattern) if search_type == "content" else None
            for candidate in root.rglob("*"):
                if len(matches) >= max_results:
                    break
                if not candidate.is_file():
                    continue
                if regex is None:
                    if fnmatch.fnmatch(candidate.name, pattern):
                        matches.append(str(candidate))
                    continue
                try:
                    if regex.search(candidate.read_text(errors="ignore")):
                        matches.append(str(candidate))
                except OSError as exc:
                    logger.debug(f"Skipping unreadable file {candidate}: {exc}")
            return matches

        return await asyncio.to_thread(_search)

    async def web_search(
        self, query: str, num_results: int = 5, search_type: str = "general"
    ) -> Any:
        if self._web_search is None:
            raise RuntimeError("Web search is not configured")
        return await self._web_search(query, num_results, search_type)

    async def invoke_agent(
        self, agent_id: str, message: str, context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        if self._agent_invoker is None:
            raise RuntimeError("Sub-agent invocation is not configured")
        return await self._agent_invoker(agent_id, message, context)

    async def search_bookmarks(self, query: str, limit: int = 10) -> List[Any]:
        if self._bookmark_search is None:
            raise RuntimeError("Bookmark search is not configured")
        return await self._bookmark_search(query, limit)
