"""
Call Directory

Async persistence for calls, messages and the staff/client lookups used to
resolve the codes embedded in recording filenames. Lookups return None on a
miss; absence is a normal outcome, not an error.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import ConfigurationError
from .models import Base, Call, Client, Message, Staff, SYSTEM_ROLE

logger = logging.getLogger(__name__)


def _digits_only(column):
    """SQL expression stripping common phone separators from a column."""
    return func.replace(func.replace(func.replace(column, '-', ''), ' ', ''), '.', '')


class CallDirectory:
    """
    Persistence collaborator for the intake pipeline.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        system_actor_name: str = 'Intake Assistant',
        system_actor_email: str = 'assistant@system.local',
        serialize_sessions: bool = False,
    ):
        self.engine = engine
        self.async_session = sessionmaker(
            self.engine,
            expire_on_commit=False,
            class_=AsyncSession
        )
        self.system_actor_name = system_actor_name
        self.system_actor_email = system_actor_email
        # Sessions sharing a single connection must not interleave transactions
        self._lock: Optional[asyncio.Lock] = asyncio.Lock() if serialize_sessions else None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self._lock is None:
            async with self.async_session() as session:
                yield session
            return
        async with self._lock:
            async with self.async_session() as session:
                yield session

    @classmethod
    def from_url(cls, database_url: Optional[str], **kwargs) -> "CallDirectory":
        """Create a directory with its own engine."""
        if not database_url:
            raise ConfigurationError("DATABASE_URL not found in environment variables.")

        engine_kwargs: Dict[str, Any] = {'echo': False, 'future': True}
        in_memory = ':memory:' in database_url or database_url.rstrip('/').endswith(':')
        if database_url.startswith('sqlite') and in_memory:
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs['poolclass'] = StaticPool
            engine_kwargs['connect_args'] = {'check_same_thread': False}
            kwargs.setdefault('serialize_sessions', True)

        return cls(create_async_engine(database_url, **engine_kwargs), **kwargs)

    async def create_schema(self) -> None:
        """Create all tables that don't exist yet."""
        if self._lock is not None:
            async with self._lock:
                await self._create_all()
        else:
            await self._create_all()
        logger.info("Database tables created/verified")

    async def _create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def find_call_by_filename(self, file_name: str) -> Optional[Call]:
        async with self._session() as session:
            result = await session.execute(
                select(Call).where(Call.recording_file_name == file_name)
            )
            return result.scalars().first()

    async def get_call(self, call_id: int) -> Optional[Call]:
        async with self._session() as session:
            return await session.get(Call, call_id)

    async def create_call(
        self,
        recording_file_name: str,
        call_date: date,
        caller_name: str,
        client_name: Optional[str],
        phone_number: str,
        call_duration: str,
        staff_id: Optional[int] = None,
        client_id: Optional[int] = None,
    ) -> Optional[Call]:
        """
        Create a call record.

        Returns None if a call for this recording already exists; the unique
        constraint on recording_file_name turns a lost dedup race into a no-op.
        """
        call = Call(
            recording_file_name=recording_file_name,
            call_date=call_date,
            caller_name=caller_name,
            client_name=client_name,
            phone_number=phone_number,
            call_duration=call_duration,
            staff_id=staff_id,
            client_id=client_id,
            transcript=None,
            file_exists=True,
        )
        async with self._session() as session:
            session.add(call)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Call for {recording_file_name} already exists, skipping create")
                return None
            await session.refresh(call)

        logger.info(f"Created call with ID: {call.call_id}")
        return call

    async def set_call_file_exists(self, call_id: int, file_exists: bool) -> None:
        async with self._session() as session:
            async with session.begin():
                await session.execute(
                    update(Call)
                    .where(Call.call_id == call_id)
                    .values(file_exists=file_exists, updated_at=func.now())
                )
        logger.info(f"Updated file_exists={file_exists} for call {call_id}")

    async def update_call_transcript(self, call_id: int, transcript: str) -> None:
        async with self._session() as session:
            async with session.begin():
                result = await session.execute(
                    update(Call)
                    .where(Call.call_id == call_id)
                    .values(transcript=transcript, updated_at=func.now())
                )
                if result.rowcount == 0:
                    raise LookupError(f"Call {call_id} does not exist")
        logger.info(f"Updated transcript for call {call_id}")

    async def list_calls(self, limit: int = 100) -> List[Call]:
        async with self._session() as session:
            result = await session.execute(
                select(Call).order_by(Call.created_at.desc(), Call.call_id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Staff and client lookups
    # ------------------------------------------------------------------

    async def find_staff_by_code(self, tp_code: str) -> Optional[Staff]:
        async with self._session() as session:
            result = await session.execute(select(Staff).where(Staff.tp_code == tp_code))
            return result.scalars().first()

    async def find_client_by_code(self, tp_code: str) -> Optional[Client]:
        async with self._session() as session:
            result = await session.execute(select(Client).where(Client.tp_code == tp_code))
            return result.scalars().first()

    async def find_client_by_phone(self, phone_number: str) -> Optional[Client]:
        """Match on digits only so stored numbers like 010-5291-3391 are found."""
        digits = ''.join(ch for ch in phone_number if ch.isdigit())
        if not digits:
            return None
        async with self._session() as session:
            result = await session.execute(
                select(Client).where(_digits_only(Client.contact_number) == digits)
            )
            return result.scalars().first()

    async def add_staff(
        self,
        name: str,
        email: str,
        tp_code: Optional[str] = None,
        role: str = 'staff',
    ) -> Staff:
        staff = Staff(name=name, email=email, tp_code=tp_code, role=role)
        async with self._session() as session:
            async with session.begin():
                session.add(staff)
        return staff

    async def add_client(
        self,
        company_name: str,
        tp_code: Optional[str] = None,
        contact_number: Optional[str] = None,
        representative: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Client:
        client = Client(
            company_name=company_name,
            tp_code=tp_code,
            contact_number=contact_number,
            representative=representative,
            email=email,
        )
        async with self._session() as session:
            async with session.begin():
                session.add(client)
        return client

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def find_or_create_system_actor(self) -> Staff:
        """Get the staff row that authors generated messages, creating it on first use."""
        actor = await self._find_system_actor()
        if actor:
            return actor

        try:
            actor = await self.add_staff(
                name=self.system_actor_name,
                email=self.system_actor_email,
                role=SYSTEM_ROLE,
            )
            logger.info(f"Created system actor with ID: {actor.staff_id}")
            return actor
        except IntegrityError:
            # Another worker created it first
            actor = await self._find_system_actor()
            if actor is None:
                raise
            return actor

    async def _find_system_actor(self) -> Optional[Staff]:
        async with self._session() as session:
            result = await session.execute(
                select(Staff).where(Staff.role == SYSTEM_ROLE).order_by(Staff.staff_id)
            )
            return result.scalars().first()

    async def create_message(
        self,
        author_id: int,
        call_id: int,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        message = Message(
            author_id=author_id,
            call_id=call_id,
            content=content,
            payload=json.dumps(metadata, ensure_ascii=False) if metadata is not None else None,
        )
        async with self._session() as session:
            session.add(message)
            await session.commit()
            await session.refresh(message)
        logger.info(f"Created message {message.message_id} for call {call_id}")
        return message

    async def list_messages(self, call_id: int) -> List[Message]:
        async with self._session() as session:
            result = await session.execute(
                select(Message).where(Message.call_id == call_id).order_by(Message.message_id)
            )
            return list(result.scalars().all())

    async def count_rows(self) -> Dict[str, int]:
        """Row counts per table, for setup output."""
        counts = {}
        async with self._session() as session:
            for name, model in (('staff', Staff), ('clients', Client), ('calls', Call), ('messages', Message)):
                result = await session.execute(select(func.count()).select_from(model))
                counts[name] = result.scalar_one()
        return counts

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()
        logger.info("CallDirectory closed")
