"""Pytest configuration and fixtures for System Map Auditor tests."""

import copy
import json
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest

from system_map_auditor.config_manager import AuditConfig
from system_map_auditor.context import AuditContext
from system_map_auditor.indexer import CodebaseIndexer
from system_map_auditor.models import ParsedCodebase


MEMORY_LIST = """import { useQuery } from "@tanstack/react-query";
import { MemoryCard } from "./MemoryCard";

export function MemoryList() {
  const { data, isLoading, error } = useQuery({ queryKey: ["/api/memories"] });
  if (isLoading) return <div>Loading</div>;
  if (error) return <div>Failed to load</div>;
  return (
    <ul>
      {data.map((m) => <MemoryCard key={m.id} memory={m} onSelect={() => {}} />)}
    </ul>
  );
}
"""

MEMORY_CARD = """export function MemoryCard({ memory, onSelect }) {
  return <div onClick={onSelect}>{memory.content}</div>;
}
"""

CREATE_MEMORY_HOOK = """import { useMutation, useQueryClient } from "@tanstack/react-query";
import { apiRequest } from "../lib/queryClient";

export function useCreateMemory() {
  const queryClient = useQueryClient();
  return useMutation({
    mutationFn: (content: string) => apiRequest("POST", "/api/memories/manual", { content }),
    onSuccess: () => {
      queryClient.invalidateQueries({ queryKey: ["/api/memories"] });
      queryClient.invalidateQueries({ queryKey: ["/api/memories/overview"] });
    },
  });
}
"""

API_REQUEST = """export async function apiRequest(method: string, url: string, body?: unknown) {
  const res = await fetch(url, { method, body: JSON.stringify(body) });
  if (!res.ok) throw new Error(res.statusText);
  return res.json();
}
"""

ROUTES = """import { Router } from "express";
import { storage } from "./storage";

export const router = Router();

router.get("/api/memories", async (req, res) => {
  res.json(await storage.getMemories());
});

router.post("/api/memories/manual", async (req, res) => {
  const memory = await storage.createMemory(req.body);
  res.status(201).json(memory);
});
"""

STORAGE = """export const storage = {
  async getMemories() { return []; },
  async createMemory(data: unknown) { return data; },
};
"""

MEMORIES_MAP = {
    "name": "memories",
    "version": "1.0",
    "components": [
        {
            "name": "MemoryList",
            "path": "src/components/MemoryList.tsx",
            "type": "component",
            "dependencies": ["MemoryCard"],
        },
        {"name": "MemoryCard", "path": "src/components/MemoryCard.tsx", "type": "component"},
    ],
    "apis": [
        {"method": "GET", "path": "/api/memories", "handler": "server/routes.ts"},
        {"method": "POST", "path": "/api/memories/manual", "handler": "server/routes.ts"},
    ],
    "flows": [
        {
            "name": "create-memory",
            "steps": [
                {
                    "action": "select",
                    "component": "MemoryList",
                    "api": "POST /api/memories/manual",
                    "description": "User selects a memory and submits it; errors are shown inline",
                },
                {
                    "action": "click",
                    "component": "MemoryCard",
                    "description": "User clicks a card to navigate to its details",
                },
            ],
        }
    ],
}


def write_files(root: Path, files: Dict[str, str]) -> Path:
    """Write ``{relative path: content}`` under *root*."""
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def write_map(root: Path, rel_path: str, document: dict) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp()).resolve()
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def write_project(temp_dir: Path) -> Callable[..., Path]:
    """Write ``{relative path: content}`` into the temp project."""
    def _write(files: Dict[str, str], root: Path = None) -> Path:
        return write_files(root or temp_dir, files)
    return _write


@pytest.fixture
def write_system_map(temp_dir: Path) -> Callable[..., Path]:
    """Write a JSON document into the temp project and return its path."""
    def _write(rel_path: str, document: dict) -> Path:
        return write_map(temp_dir, rel_path, document)
    return _write


@pytest.fixture
def config() -> AuditConfig:
    """Default configuration; tests switch individual checks off as needed."""
    return AuditConfig()


@pytest.fixture
def make_context(temp_dir: Path, config: AuditConfig) -> Callable[..., AuditContext]:
    def _make(root: Path = None, cfg: AuditConfig = None) -> AuditContext:
        return AuditContext.create(root or temp_dir, cfg or config)
    return _make


@pytest.fixture
def make_codebase(temp_dir: Path) -> Callable[..., ParsedCodebase]:
    """Write files (optional) and index the project."""
    def _make(files: Dict[str, str] = None, root: Path = None) -> ParsedCodebase:
        root = root or temp_dir
        if files:
            write_files(root, files)
        return CodebaseIndexer(root).build()
    return _make


@pytest.fixture
def sample_project(temp_dir: Path) -> Path:
    """A small React Query + Express project with one system map and one e2e test."""
    write_files(temp_dir, {
        "src/components/MemoryList.tsx": MEMORY_LIST,
        "src/components/MemoryCard.tsx": MEMORY_CARD,
        "src/hooks/useCreateMemory.ts": CREATE_MEMORY_HOOK,
        "src/lib/queryClient.ts": API_REQUEST,
        "server/routes.ts": ROUTES,
        "server/storage.ts": STORAGE,
        "tests/e2e/memories.test.ts": "test('creates a memory', async () => {});\n",
    })
    write_map(temp_dir, ".system-maps/memories.map.json", MEMORIES_MAP)
    return temp_dir


@pytest.fixture
def sample_map_path(sample_project: Path) -> Path:
    return sample_project / ".system-maps" / "memories.map.json"


@pytest.fixture
def memories_document() -> dict:
    """A fresh copy of the sample system map document."""
    return copy.deepcopy(MEMORIES_MAP)
