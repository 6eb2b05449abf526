"""
Document artifact tools.

Documents are written by the artifact model and streamed to the client as
data parts while they are generated:

    kind, id, title, clear, metadata   header of a new document
    text-delta / code-delta            body as it is produced
    suggestion, annotation             editing aids
    finish                             end of the artifact stream

Every save is a new version of the document.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel, ValidationError

from parley.prompts import (
    CODE_DOCUMENT_PROMPT,
    CONTRACT_FIELDS_PROMPT,
    CONTRACT_PLACEHOLDERS_PROMPT,
    SUGGESTIONS_PROMPT,
    TEXT_DOCUMENT_PROMPT,
    update_document_prompt,
)
from parley.storage.models import Contact, ContractField, Document, Suggestion

logger = logging.getLogger(__name__)

ARTIFACT_KINDS = ("text", "code")
MAX_SUGGESTIONS = 5
_PLACEHOLDER = re.compile(r"\[([^\]]+)\]")


def _artifact_model(ctx) -> str:
    return ctx.cfg.get("models", {}).get("artifact_model", "artifact-model")


def owned_document(ctx, document_id: str) -> Document | None:
    """Latest version of a document the caller owns; None for anyone else's."""
    document = ctx.store.get_document(document_id)
    if document is None:
        return None
    if ctx.caller is None or document.user_id != ctx.caller.id:
        logger.warning("Document %s is not owned by the caller", document_id)
        return None
    return document


async def _write_body(ctx, document_kind: str, system: str, prompt: str) -> str:
    """Stream a document body from the artifact model into the writer."""
    draft = ""
    async for delta in ctx.model_client.stream_deltas(_artifact_model(ctx), system, prompt):
        draft += delta
        if document_kind == "code":
            ctx.writer.write_data({"type": "code-delta", "content": draft})
        else:
            ctx.writer.write_data({"type": "text-delta", "content": delta})
    return draft


def _items(payload, model: type[BaseModel]) -> list[BaseModel]:
    """Validate {"items": [...]} (or a bare list) element by element."""
    raw = payload.get("items", []) if isinstance(payload, dict) else payload
    items = []
    for element in raw or []:
        try:
            items.append(model.model_validate(element))
        except ValidationError as e:
            logger.warning("Dropping malformed %s: %s", model.__name__, e.errors()[:1])
    return items


class CreateDocumentTool:
    name = "createDocument"
    description = (
        "Create a document for writing or content creation activities. The "
        "contents are generated from the title and kind and shown to the user "
        "in the document panel. Use it for substantial content (>10 lines) or "
        "code, and for content users will likely save or reuse. Do not repeat "
        "the document in the conversation."
    )
    parameters = {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "kind": {"type": "string", "enum": list(ARTIFACT_KINDS)},
            "metadata": {
                "type": "object",
                "properties": {
                    "language": {
                        "type": "string",
                        "description": 'The programming language of the document. Only required when kind is "code".',
                    },
                },
            },
        },
        "required": ["title", "kind"],
    }

    async def run(self, args: dict, ctx) -> dict:
        title = args.get("title", "")
        kind = args.get("kind")
        metadata = args.get("metadata") or {}

        if kind not in ARTIFACT_KINDS:
            return {"error": f"Unknown document kind: {kind}"}
        if kind == "code" and not metadata.get("language"):
            return {"error": 'Language is required when kind is "code"'}
        if kind != "code" and metadata.get("language"):
            return {"error": 'Language should only be provided when kind is "code"'}

        doc = Document(user_id=ctx.caller.id, title=title, kind=kind)

        ctx.writer.write_data({"type": "kind", "content": kind})
        ctx.writer.write_data({"type": "id", "content": doc.id})
        ctx.writer.write_data({"type": "title", "content": title})
        ctx.writer.write_data({"type": "clear", "content": ""})
        if metadata:
            ctx.writer.write_data({"type": "metadata", "content": metadata})

        system = CODE_DOCUMENT_PROMPT if kind == "code" else TEXT_DOCUMENT_PROMPT
        doc.content = await _write_body(ctx, kind, system, title)
        ctx.store.save_document(doc)
        ctx.writer.write_data({"type": "finish", "content": ""})
        logger.info("Created %s document %s (%s)", kind, doc.id, title)

        return {
            "id": doc.id,
            "title": title,
            "kind": kind,
            "metadata": metadata,
            "content": "A document was created and is now visible to the user.",
        }


class UpdateDocumentTool:
    name = "updateDocument"
    description = (
        "Update a document with the given description of changes. Default to "
        "full rewrites for major changes and targeted updates for isolated "
        "ones. Do not use immediately after creating a document."
    )
    parameters = {
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "The ID of the document to update"},
            "description": {"type": "string", "description": "The description of changes that need to be made"},
        },
        "required": ["id", "description"],
    }

    async def run(self, args: dict, ctx) -> dict:
        document = owned_document(ctx, args.get("id", ""))
        if document is None:
            return {"error": "Document not found"}

        ctx.writer.write_data({"type": "clear", "content": document.title})
        content = await _write_body(
            ctx,
            document.kind,
            update_document_prompt(document.content, document.kind),
            args.get("description", ""),
        )
        ctx.store.save_document(Document(
            id=document.id,
            user_id=ctx.caller.id,
            title=document.title,
            kind=document.kind,
            content=content,
        ))
        ctx.writer.write_data({"type": "finish", "content": ""})

        return {
            "id": document.id,
            "title": document.title,
            "kind": document.kind,
            "content": "The document has been updated successfully.",
        }


class SuggestionItem(BaseModel):
    originalSentence: str
    suggestedSentence: str
    description: str = ""


class RequestSuggestionsTool:
    name = "requestSuggestions"
    description = "Request suggestions for a document"
    parameters = {
        "type": "object",
        "properties": {
            "documentId": {"type": "string", "description": "The ID of the document to request edits"},
        },
        "required": ["documentId"],
    }

    async def run(self, args: dict, ctx) -> dict:
        document_id = args.get("documentId", "")
        document = owned_document(ctx, document_id)
        if document is None or not document.content:
            return {"error": "Document not found"}

        payload = await ctx.model_client.generate_json(
            _artifact_model(ctx), SUGGESTIONS_PROMPT, document.content,
        )

        suggestions = []
        for item in _items(payload, SuggestionItem)[:MAX_SUGGESTIONS]:
            suggestion = Suggestion(
                document_id=document_id,
                document_created_at=document.created_at,
                original_text=item.originalSentence,
                suggested_text=item.suggestedSentence,
                description=item.description,
                user_id=ctx.caller.id,
            )
            ctx.writer.write_data({
                "type": "suggestion",
                "content": {
                    "id": suggestion.id,
                    "document_id": document_id,
                    "original_text": suggestion.original_text,
                    "suggested_text": suggestion.suggested_text,
                    "description": suggestion.description,
                    "is_resolved": False,
                },
            })
            suggestions.append(suggestion)

        ctx.store.save_suggestions(suggestions)

        return {
            "id": document_id,
            "title": document.title,
            "kind": document.kind,
            "message": "Suggestions have been added to the document",
        }


class ContractFieldItem(BaseModel):
    field_name: str
    field_type: str
    placeholder_text: str
    signer_reference: str
    prefix: str = ""
    suffix: str = ""
    context: str | None = None
    is_required: bool = False


class RequestContractFieldsTool:
    name = "requestContractFields"
    description = (
        "Request contract fields for a document for digital signing. Adds "
        "placeholders like [Name] or [Company] where needed and extracts them "
        "as structured fields assigned to each signer."
    )
    parameters = {
        "type": "object",
        "properties": {
            "documentId": {"type": "string", "description": "The ID of the document to extract contract fields from"},
        },
        "required": ["documentId"],
    }

    async def _add_placeholders(self, document: Document, ctx) -> str:
        """Have the artifact model insert [Field] placeholders; saves a new version."""
        updated = await ctx.model_client.generate_text(
            _artifact_model(ctx), CONTRACT_PLACEHOLDERS_PROMPT, document.content,
        )
        updated = updated.strip()
        if not updated or updated == document.content or "No fields needed" in updated:
            return document.content

        ctx.store.save_document(Document(
            id=document.id,
            user_id=ctx.caller.id,
            title=document.title,
            kind=document.kind,
            content=updated,
        ))
        ctx.writer.write_data({
            "type": "updatedDocument",
            "content": {"id": document.id, "content": updated},
        })
        logger.info("Added signer placeholders to document %s", document.id)
        return updated

    async def run(self, args: dict, ctx) -> dict:
        document_id = args.get("documentId", "")
        document = owned_document(ctx, document_id)
        if document is None or not document.content:
            logger.warning("Document not found or empty: %s", document_id)
            return {"error": "Document not found"}

        had_placeholders = bool(_PLACEHOLDER.search(document.content))
        content = document.content
        if not had_placeholders:
            content = await self._add_placeholders(document, ctx)

        payload = await ctx.model_client.generate_json(
            _artifact_model(ctx), CONTRACT_FIELDS_PROMPT, content,
        )

        contacts: dict[str, Contact] = {}
        fields: dict[tuple[str, str], ContractField] = {}
        occurrences = 0

        for item in _items(payload, ContractFieldItem):
            contact = contacts.get(item.signer_reference)
            if contact is None:
                contact = ctx.store.save_contact(
                    Contact(user_id=ctx.caller.id, name=item.signer_reference)
                )
                contacts[item.signer_reference] = contact

            key = (item.field_name, contact.id)
            definition = fields.get(key)
            if definition is None:
                definition = ContractField(
                    document_id=document_id,
                    contact_id=contact.id,
                    user_id=ctx.caller.id,
                    field_name=item.field_name,
                    field_type=item.field_type,
                    placeholder_text=item.placeholder_text,
                    is_required=item.is_required,
                )
                fields[key] = definition

            position = {
                "placeholder": item.placeholder_text,
                "prefix": item.prefix,
                "suffix": item.suffix,
            }
            if item.context:
                position["context"] = item.context

            occurrences += 1
            ctx.writer.write_data({
                "type": "annotation",
                "content": {
                    "type": "contractField",
                    "data": {
                        "definition": {
                            "id": definition.id,
                            "document_id": document_id,
                            "contact_id": contact.id,
                            "user_id": ctx.caller.id,
                            "field_name": definition.field_name,
                            "field_type": definition.field_type,
                            "is_required": definition.is_required,
                            "is_filled": False,
                        },
                        "occurrence": {
                            "field_definition_id": definition.id,
                            "placeholder_text": item.placeholder_text,
                            "position": position,
                        },
                    },
                },
            })

        if fields:
            ctx.store.save_contract_fields(list(fields.values()))

        signers = [
            {
                "reference": reference,
                "contact_id": contact.id,
                "fields_count": sum(1 for f in fields.values() if f.contact_id == contact.id),
            }
            for reference, contact in contacts.items()
        ]
        logger.info(
            "Extracted %d contract fields (%d occurrences, %d signers) from document %s",
            len(fields), occurrences, len(signers), document_id,
        )

        return {
            "id": document_id,
            "title": document.title,
            "kind": document.kind,
            "fields_count": len(fields),
            "occurrences_count": occurrences,
            "signers": signers,
            "content_updated": not had_placeholders and content != document.content,
            "message": "Contract fields have been identified in the document",
        }
