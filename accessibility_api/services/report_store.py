"""
MongoDB persistence for finished reports.

The store is optional. When it is missing or unreachable the service keeps
analyzing; history simply comes back empty.
"""

import math
from typing import Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from accessibility_api.models import AnalysisRequest, Report

logger = structlog.get_logger(__name__)

COLLECTION = "analyses"
LIST_PROJECTION = {"results": 0}


class MongoReportStore:
    def __init__(
        self,
        uri: str,
        database: str,
        timeout_ms: int = 5000,
        stored_input_max_chars: int = 1000,
        client: Optional[AsyncIOMotorClient] = None,
    ):
        self.uri = uri
        self.database_name = database
        self.timeout_ms = timeout_ms
        self.stored_input_max_chars = stored_input_max_chars
        self.client = client
        self.connected = False

    @property
    def collection(self):
        return self.client[self.database_name][COLLECTION]

    async def connect(self) -> bool:
        """Open the client and ping the server. Failure is logged, never raised."""
        if self.client is None:
            self.client = AsyncIOMotorClient(self.uri, serverSelectionTimeoutMS=self.timeout_ms)
        try:
            await self.client.admin.command("ping")
            self.connected = True
            logger.info("MongoDB connected", database=self.database_name)
        except PyMongoError as e:
            self.connected = False
            logger.error("MongoDB connection error, continuing without report store", error=str(e))
        return self.connected

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()
        self.connected = False

    def stored_input(self, request: AnalysisRequest) -> str:
        if request.kind == "url":
            return request.url
        return request.markup[: self.stored_input_max_chars] + "..."

    async def save(self, report: Report, request: AnalysisRequest) -> None:
        document = {
            "_id": report.report_id,
            "type": report.type,
            "input": self.stored_input(request),
            "results": report.to_response(),
            "timestamp": report.timestamp,
            "complianceScore": report.compliance_score,
            "totalIssues": report.total_issues,
        }
        await self.collection.insert_one(document)
        logger.info("Analysis saved to database", report_id=report.report_id)

    async def list_reports(self, page: int = 1, limit: int = 10, kind: Optional[str] = None) -> dict:
        """Newest first, without the nested results payload."""
        query = {"type": kind} if kind else {}
        cursor = (
            self.collection.find(query, LIST_PROJECTION)
            .sort("timestamp", DESCENDING)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        analyses = [self._summary(doc) async for doc in cursor]
        total = await self.collection.count_documents(query)
        return {
            "analyses": analyses,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0,
            },
        }

    async def get_report(self, report_id: str) -> Optional[dict]:
        doc = await self.collection.find_one({"_id": report_id})
        if doc is None:
            return None
        summary = self._summary(doc)
        summary["results"] = doc.get("results")
        return summary

    @staticmethod
    def _summary(doc: dict) -> dict:
        timestamp = doc.get("timestamp")
        return {
            "id": str(doc["_id"]),
            "type": doc.get("type"),
            "input": doc.get("input"),
            "timestamp": timestamp.isoformat() if hasattr(timestamp, "isoformat") else timestamp,
            "complianceScore": doc.get("complianceScore"),
            "totalIssues": doc.get("totalIssues"),
        }
