from sqlalchemy import String, JSON, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from bakeledger.db import Base
from bakeledger.models.common import IdMixin, TSMMixin

# ── Remote document store ───────────────────────────────────────────────────
class RemoteDocument(Base, IdMixin, TSMMixin):
    """One document of a collection, addressed as (owner, collection, doc_id)."""
    __tablename__ = "remote_document"
    __table_args__ = (
        UniqueConstraint("owner", "collection", "doc_id", name="uq_remote_document_path"),
        Index("ix_remote_document_scope", "owner", "collection"),
    )
    owner: Mapped[str] = mapped_column(String(64))
    collection: Mapped[str] = mapped_column(String(60))
    doc_id: Mapped[str] = mapped_column(String(64))
    data: Mapped[dict] = mapped_column(JSON, default=dict)

# ── Device-local mirror ─────────────────────────────────────────────────────
class LocalEntry(Base, TSMMixin):
    """Key/value row backing the local mirror; value is the JSON snapshot."""
    __tablename__ = "local_entry"
    key: Mapped[str] = mapped_column(String(160), primary_key=True)
    value: Mapped[dict | list | None] = mapped_column(JSON)
