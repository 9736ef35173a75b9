"""
LLM Extract Client
Schema extraction through an OpenAI-compatible chat model, exposed through the
same submit/status job interface as the Firecrawl extract API. Jobs run as
local asyncio tasks: fetch page -> JSON-mode completion -> parsed payload.
"""

import os
import json
import uuid
import asyncio
import logging
from typing import Any, Dict, List, Optional

import openai

from config_manager import get_config
from prompt import build_extraction_prompt, build_llm_user_message
from actions.firecrawl_extract import ExtractJob
from actions.visitor import WebVisitor

logger = logging.getLogger(__name__)


def create_llm_client() -> Optional["openai.OpenAI"]:
    """OpenAI client when OPENAI_API_KEY_AGENT is set, else None"""
    api_key = os.getenv("OPENAI_API_KEY_AGENT")
    api_base = get_config().get('external_services.openai.api_base')
    if not api_key:
        print("[LLM_EXTRACT][WARN] No API credentials, AI extraction disabled")
        return None
    print("[LLM_EXTRACT][INIT] OpenAI client ready")
    return openai.OpenAI(api_key=api_key, base_url=api_base)


class LlmExtractClient:
    """Local job runner backed by a chat-completion model"""

    name = "openai"

    def __init__(self, llm_client=None, visitor: Optional[WebVisitor] = None, model_name: str = None,
                 retention_s: Optional[float] = None):
        self.client = llm_client
        cfg = get_config()
        self.model_name = model_name or os.getenv("OPENAI_API_MODEL_AGENT_EXTRACTOR") or cfg.get('models.extractor.model_name', 'gpt-4o-mini')
        self.temperature = cfg.get('models.extractor.temperature', 0.0)
        self.max_tokens = cfg.get('models.extractor.max_tokens', 2000)
        self.visitor = visitor or WebVisitor()
        # finished jobs nobody polls are evicted after this many seconds
        self.retention_s = cfg.get('extraction.job_retention_s', 60) if retention_s is None else retention_s
        self._jobs: Dict[str, asyncio.Task] = {}

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def submit(self, urls: List[str], locale: Optional[str] = None,
                     crawl: Optional[Dict[str, Any]] = None) -> Optional[str]:
        if not self.configured or not urls:
            return None
        job_id = f"llm_{uuid.uuid4().hex[:12]}"
        task = asyncio.ensure_future(self._run_job(list(urls), locale))
        task.add_done_callback(lambda t: self._on_done(job_id, t))
        self._jobs[job_id] = task
        print(f"[LLM_EXTRACT][SUBMIT] job={job_id} urls={len(urls)}")
        return job_id

    async def status(self, job_id: str) -> ExtractJob:
        task = self._jobs.get(job_id)
        if task is None:
            return ExtractJob(job_id=job_id, status="failed", error="unknown job")
        if not task.done():
            return ExtractJob(job_id=job_id, status="processing")
        self._jobs.pop(job_id, None)
        if task.cancelled():
            return ExtractJob(job_id=job_id, status="cancelled")
        if task.exception() is not None:
            return ExtractJob(job_id=job_id, status="failed", error=str(task.exception()))
        return ExtractJob(job_id=job_id, status="completed", data=task.result())

    def abandon(self, job_id: str):
        """Stop tracking a job the caller gave up on; the task itself runs to completion"""
        if self._jobs.pop(job_id, None) is not None:
            print(f"[LLM_EXTRACT][ABANDON] job={job_id}")

    def _on_done(self, job_id: str, task: asyncio.Task):
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"[LLM_EXTRACT][FAILED] job={job_id}: {task.exception()}")
        if job_id in self._jobs:
            task.get_loop().call_later(self.retention_s, self._jobs.pop, job_id, None)

    async def _run_job(self, urls: List[str], locale: Optional[str]) -> Dict[str, Any]:
        results = []
        for url in urls:
            data = await self._extract_url(url, locale)
            if data:
                results.append({"url": url, "data": data})
        return {"results": results}

    async def _extract_url(self, url: str, locale: Optional[str]) -> Optional[Dict[str, Any]]:
        page = await self.visitor.fetch(url)
        if not page.success or not page.content:
            logger.info(f"[LLM_EXTRACT][SKIP] {url}: {page.error or 'empty page'}")
            return None
        content = f"Title: {page.title}\n\n{page.content}" if page.title else page.content
        return await asyncio.to_thread(self._complete, url, content, locale)

    def _complete(self, url: str, content: str, locale: Optional[str]) -> Optional[Dict[str, Any]]:
        messages = [
            {"role": "system", "content": build_extraction_prompt(locale)},
            {"role": "user", "content": build_llm_user_message(url, content)},
        ]
        try:
            try:
                response = self.client.chat.completions.create(
                    model=self.model_name,
                    messages=messages,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    response_format={"type": "json_object"},
                )
            except openai.BadRequestError as api_error:
                print(f"[LLM_EXTRACT][WARN] response_format not supported ({api_error}), retrying without it")
                response = self.client.chat.completions.create(
                    model=self.model_name,
                    messages=messages,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )
        except openai.OpenAIError as e:
            logger.warning(f"[LLM_EXTRACT][ERROR] completion failed for {url}: {e}")
            return None

        result_text = (response.choices[0].message.content or "").strip()
        if result_text.startswith("```"):
            result_text = result_text.strip("`")
            result_text = result_text[4:] if result_text.lower().startswith("json") else result_text
        try:
            data = json.loads(result_text)
        except json.JSONDecodeError as err:
            print(f"[LLM_EXTRACT][ERROR] JSON decode failed for {url}: {err}")
            return None
        return data if isinstance(data, dict) else None
