# /chathub/services/db_service.py

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument

from chathub.config.settings import settings
from chathub.models.conversation import Chat, ChatMessage
from chathub.models.tenant import Owner, StaffMember, TenantContext
from chathub.services.cache_service import cache_service
from chathub.utils.circuit_breaker import RedisCircuitBreaker
from chathub.utils.metrics import database_operations_counter

logger = logging.getLogger(__name__)

# Fields of a chat document rewritten by save_chat in one $set.
CHAT_MUTABLE_FIELDS = (
    "name",
    "status",
    "messages",
    "ai_enabled",
    "leading_staff",
    "current_workflow_block_id",
)


class DatabaseService:
    """
    MongoDB access for the conversation core.

    Tenant-side collections (websites, plans, users, staff) are owned by the
    account management side of the platform and are read here with their
    stored camelCase field names; the only tenant write is the atomic credit
    decrement. The chats collection is owned by this service.
    """

    def __init__(self, mongo_uri: str):
        try:
            self.client = AsyncIOMotorClient(
                mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                tls=settings.mongo_ssl,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000,
            )
            self.db = self.client.get_default_database()
            self.circuit_breaker = RedisCircuitBreaker(cache_service.redis, "database")
            logger.info("MongoDB client initialized successfully.")
        except Exception as e:
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    # ==================== Helper Methods ====================

    async def _safe_db_operation(
        self,
        operation,
        use_circuit_breaker: bool = True,
        default_return: Any = None,
    ) -> Any:
        """
        Execute a read whose failure should degrade rather than abort.

        Args:
            operation: Async callable to execute
            use_circuit_breaker: Whether to use circuit breaker
            default_return: Value to return on failure

        Returns:
            Operation result or default_return on failure
        """
        try:
            if use_circuit_breaker:
                return await self.circuit_breaker.call(operation)
            return await operation()
        except Exception as e:
            logger.exception(f"Database operation failed: {type(e).__name__}")
            database_operations_counter.labels(operation="db_error", status="failed").inc()
            return default_return

    @staticmethod
    def _oid(value: Optional[str]) -> Optional[ObjectId]:
        if isinstance(value, ObjectId):
            return value
        if not value or not isinstance(value, str) or not ObjectId.is_valid(value):
            return None
        return ObjectId(value)

    @staticmethod
    def _now_utc() -> datetime:
        return datetime.now(timezone.utc)

    # ==================== Index Management ====================

    async def create_indexes(self) -> None:
        """Create all necessary database indexes on startup."""
        indexes = [
            ("websites", [("chatbotCode", 1)], {"unique": True}),
            ("websites", [("owner", 1)], {}),
            ("staff", [("website", 1)], {}),
            ("chats", [("tenant_id", 1), ("updated_at", -1)], {}),
            ("chats", [("status", 1)], {}),
        ]

        for collection, keys, options in indexes:
            try:
                await self.db[collection].create_index(keys, **options)
                logger.debug(f"Created index on {collection}: {keys}")
            except Exception as e:
                logger.error(f"Failed to create index on {collection} {keys}: {e}")

        logger.info("Database indexes created successfully.")

    async def health_check(self) -> bool:
        try:
            await self.client.admin.command("ping")
            return True
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return False

    # ==================== Tenant Operations ====================

    async def _build_tenant(self, website: Dict[str, Any]) -> TenantContext:
        plan = None
        plan_id = website.get("plan")
        if plan_id:
            plan = await self._safe_db_operation(lambda: self.db.plans.find_one({"_id": plan_id}))

        owner_id = website.get("owner")
        owner = None
        if owner_id:
            owner = await self._safe_db_operation(lambda: self.db.users.find_one({"_id": owner_id}, {"preferences": 1}))

        staff_ids = [str(s) for s in website.get("staffMembers") or []]
        if not staff_ids:
            staff_docs = await self._safe_db_operation(
                lambda: self.db.staff.find({"website": website["_id"]}, {"_id": 1}).to_list(length=None),
                default_return=[],
            )
            staff_ids = [str(doc["_id"]) for doc in staff_docs]

        preferences = website.get("preferences") or {}
        owner_preferences = (owner or {}).get("preferences") or {}
        return TenantContext(
            id=str(website["_id"]),
            name=website.get("name", ""),
            link=website.get("link"),
            chatbot_code=website.get("chatbotCode", ""),
            workflow_raw=website.get("predefinedAnswers"),
            plan_allows_ai=bool((plan or {}).get("allowAI", False)),
            credit_count=int(website.get("creditCount") or 0),
            daily_token_limit=preferences.get("dailyTokenLimit") or None,
            preferences_allow_ai=bool(preferences.get("allowAIResponses", False)),
            language=preferences.get("language") or settings.default_language,
            owner_id=str(owner_id) if owner_id else None,
            owner_notify_telegram=bool(owner_preferences.get("telegram", False)),
            staff_ids=staff_ids,
        )

    async def get_tenant_by_id(self, tenant_id: str) -> Optional[TenantContext]:
        oid = self._oid(tenant_id)
        if not oid:
            return None
        website = await self._safe_db_operation(lambda: self.db.websites.find_one({"_id": oid}))
        if not website:
            database_operations_counter.labels(operation="get_tenant", status="not_found").inc()
            return None
        database_operations_counter.labels(operation="get_tenant", status="success").inc()
        return await self._build_tenant(website)

    async def get_tenant_by_chatbot_code(self, chatbot_code: str) -> Optional[TenantContext]:
        if not chatbot_code:
            return None
        website = await self._safe_db_operation(lambda: self.db.websites.find_one({"chatbotCode": chatbot_code}))
        if not website:
            database_operations_counter.labels(operation="get_tenant", status="not_found").inc()
            return None
        database_operations_counter.labels(operation="get_tenant", status="success").inc()
        return await self._build_tenant(website)

    async def get_tenant_for_chat(self, chat: Chat) -> Optional[TenantContext]:
        return await self.get_tenant_by_id(chat.tenant_id)

    async def decrement_credit(self, tenant_id: str) -> bool:
        """
        Atomically consume one usage credit.

        Returns:
            False when the tenant had no credit left (nothing was changed).
        """
        oid = self._oid(tenant_id)
        if not oid:
            return False
        result = await self._safe_db_operation(
            lambda: self.db.websites.update_one(
                {"_id": oid, "creditCount": {"$gt": 0}},
                {"$inc": {"creditCount": -1}},
            )
        )
        decremented = bool(result and result.modified_count == 1)
        database_operations_counter.labels(
            operation="decrement_credit", status="success" if decremented else "skipped"
        ).inc()
        return decremented

    async def get_staff(self, staff_id: str) -> Optional[StaffMember]:
        oid = self._oid(staff_id)
        if not oid:
            return None
        doc = await self._safe_db_operation(lambda: self.db.staff.find_one({"_id": oid}, {"password": 0}))
        if not doc:
            return None
        return StaffMember(
            id=str(doc["_id"]),
            tenant_id=str(doc.get("website")),
            name=doc.get("name", ""),
            email=doc.get("email"),
        )

    async def get_owner(self, owner_id: str) -> Optional[Owner]:
        oid = self._oid(owner_id)
        if not oid:
            return None
        doc = await self._safe_db_operation(lambda: self.db.users.find_one({"_id": oid}, {"email": 1, "preferences": 1}))
        if not doc:
            return None
        return Owner(
            id=str(doc["_id"]),
            email=doc.get("email"),
            notify_via_telegram=bool((doc.get("preferences") or {}).get("telegram", False)),
        )

    async def list_website_links(self) -> List[str]:
        docs = await self._safe_db_operation(
            lambda: self.db.websites.find({}, {"link": 1}).to_list(length=None),
            default_return=[],
        )
        return [doc["link"] for doc in docs if doc.get("link")]

    # ==================== Chat Operations ====================

    @staticmethod
    def _document_to_chat(doc: Dict[str, Any]) -> Chat:
        doc = dict(doc)
        doc["id"] = str(doc.pop("_id"))
        messages = doc.get("messages") or []
        if isinstance(messages, str):
            # Legacy documents stored the log as a JSON string.
            messages = json.loads(messages or "[]")
        doc["messages"] = messages
        return Chat.model_validate(doc)

    @staticmethod
    def _chat_to_document(chat: Chat) -> Dict[str, Any]:
        return chat.model_dump(mode="python", exclude={"id"})

    async def load_chat(self, chat_id: str) -> Optional[Chat]:
        """
        Load one chat. Returns None when it does not exist.

        Raises on database failure so the caller's turn aborts before any
        state is written.
        """
        oid = self._oid(chat_id)
        if not oid:
            return None
        doc = await self.circuit_breaker.call(lambda: self.db.chats.find_one({"_id": oid}))
        database_operations_counter.labels(operation="load_chat", status="success" if doc else "not_found").inc()
        return self._document_to_chat(doc) if doc else None

    async def insert_chat(
        self,
        tenant_id: str,
        email: str,
        name: str,
        country: Optional[str],
        ai_enabled: bool,
        messages: List[ChatMessage],
        current_workflow_block_id: Optional[str],
    ) -> Chat:
        now = self._now_utc()
        chat = Chat(
            id=str(ObjectId()),
            tenant_id=tenant_id,
            email=email,
            name=name,
            country=country,
            ai_enabled=ai_enabled,
            messages=messages,
            current_workflow_block_id=current_workflow_block_id,
            created_at=now,
            updated_at=now,
        )
        document = self._chat_to_document(chat)
        document["_id"] = ObjectId(chat.id)
        await self.circuit_breaker.call(lambda: self.db.chats.insert_one(document))

        tenant_oid = self._oid(tenant_id)
        if tenant_oid:
            await self._safe_db_operation(
                lambda: self.db.websites.update_one({"_id": tenant_oid}, {"$push": {"chats": document["_id"]}})
            )
        database_operations_counter.labels(operation="insert_chat", status="success").inc()
        return chat

    async def save_chat(self, chat: Chat) -> Chat:
        """Persist every mutable chat field in one atomic $set."""
        oid = self._oid(chat.id)
        if not oid:
            raise ValueError(f"Invalid chat id: {chat.id}")
        chat.updated_at = self._now_utc()
        document = self._chat_to_document(chat)
        update = {field: document[field] for field in CHAT_MUTABLE_FIELDS}
        update["updated_at"] = chat.updated_at
        result = await self.circuit_breaker.call(
            lambda: self.db.chats.find_one_and_update(
                {"_id": oid},
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )
        )
        database_operations_counter.labels(operation="save_chat", status="success" if result else "not_found").inc()
        return self._document_to_chat(result) if result else chat


# Globally accessible instance
db_service = DatabaseService(settings.mongo_uri)
