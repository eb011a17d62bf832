import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Optional

from docqa.config import settings
from docqa.exceptions import StorageFailure
from docqa.services.conversation import ConversationStore
from docqa.services.llm import LLMService
from docqa.services.repository import ScoredChunk, StoredMessage
from docqa.services.retrieval import RetrievalService


logger = logging.getLogger(__name__)


class AnswerState(str, Enum):
    RECEIVED = "received"
    CONTEXT_RETRIEVED = "context_retrieved"
    PROMPT_BUILT = "prompt_built"
    STREAMING = "streaming"
    COMPLETED = "completed"


class SessionLocks:
    """One asyncio.Lock per session id, dropped once nobody holds a reference."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock


@dataclass
class PreparedAnswer:
    session_id: str
    question: str
    prompt: str
    chunks: list[ScoredChunk]
    history: list[StoredMessage]
    state: AnswerState = AnswerState.PROMPT_BUILT
    lock: Optional[asyncio.Lock] = field(default=None, repr=False)

    def release(self) -> None:
        if self.lock is not None and self.lock.locked():
            self.lock.release()
        self.lock = None


class ResponseGenerator:
    PREAMBLE = (
        "Answer the question using the document context below when it is relevant. "
        "Take the conversation history into account for follow-up questions."
    )
    NO_CONTEXT_NOTE = (
        "No relevant context is available from the uploaded documents. "
        "Answer from general knowledge and mention that the answer is not based on the documents."
    )

    def __init__(
        self,
        retriever: RetrievalService,
        conversations: ConversationStore,
        llm: LLMService,
        top_k: int = None,
        history_turns: int = None,
        locks: Optional[SessionLocks] = None
    ):
        self.retriever = retriever
        self.conversations = conversations
        self.llm = llm
        self.top_k = top_k or settings.retrieval_top_k
        self.history_turns = settings.history_turns if history_turns is None else history_turns
        self.locks = locks or session_locks

    def build_prompt(
        self,
        question: str,
        chunks: list[ScoredChunk],
        history: list[StoredMessage]
    ) -> str:
        sections = [self.PREAMBLE]

        if chunks:
            context = "\n\n".join(chunk.content for chunk in chunks)
            sections.append(f"Context:\n{context}")
        else:
            sections.append(self.NO_CONTEXT_NOTE)

        if history:
            turns = "\n".join(f"{message.role}: {message.content}" for message in history)
            sections.append(f"Conversation history:\n{turns}")

        sections.append(f"Question: {question}\n\nAnswer:")
        return "\n\n".join(sections)

    async def prepare(self, session_id: str, question: str) -> PreparedAnswer:
        """Retrieve context and history and build the prompt.

        The session lock is taken here and released when ``stream`` finishes,
        so concurrent questions on one session run one after another.
        """
        logger.debug(f"[{session_id}] {AnswerState.RECEIVED.value}")
        lock = self.locks.get(session_id)
        await lock.acquire()
        try:
            chunks = await self.retriever.search(session_id, question, self.top_k)
            logger.debug(f"[{session_id}] {AnswerState.CONTEXT_RETRIEVED.value}: {len(chunks)} chunks")

            history = await self.conversations.recent(session_id, self.history_turns)
            prompt = self.build_prompt(question, chunks, history)
        except BaseException:
            lock.release()
            raise

        return PreparedAnswer(
            session_id=session_id,
            question=question,
            prompt=prompt,
            chunks=chunks,
            history=history,
            lock=lock
        )

    async def stream(self, prepared: PreparedAnswer) -> AsyncIterator[str]:
        """Forward model fragments as they arrive and persist the exchange at the end.

        Raises GenerationFailure when neither the stream nor the fallback
        produced any text; nothing is persisted then.
        """
        accumulated: list[str] = []
        prepared.state = AnswerState.STREAMING
        try:
            try:
                async for fragment in self.llm.generate_stream(prepared.prompt):
                    accumulated.append(fragment)
                    yield fragment
            except Exception as e:
                if accumulated:
                    logger.error(f"[{prepared.session_id}] Stream failed mid-answer, truncating: {e}")
                else:
                    logger.warning(f"[{prepared.session_id}] Stream failed before output, falling back: {e}")
                    try:
                        text = await self.llm.generate(prepared.prompt)
                    except Exception as fallback_error:
                        logger.error(f"[{prepared.session_id}] Fallback generation failed: {fallback_error}")
                        raise
                    if text:
                        accumulated.append(text)
                        yield text

            prepared.state = AnswerState.COMPLETED
            answer = "".join(accumulated)
            if answer:
                try:
                    await self.conversations.append(prepared.session_id, "user", prepared.question)
                    await self.conversations.append(prepared.session_id, "assistant", answer)
                except StorageFailure as e:
                    # Fragments are already delivered; the response cannot carry this error
                    logger.error(f"[{prepared.session_id}] Could not persist exchange: {e}")
            else:
                logger.warning(f"[{prepared.session_id}] Empty answer, nothing persisted")
        finally:
            prepared.release()

    async def answer(self, session_id: str, question: str) -> AsyncIterator[str]:
        prepared = await self.prepare(session_id, question)
        async for fragment in self.stream(prepared):
            yield fragment


session_locks = SessionLocks()
