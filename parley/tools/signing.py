"""
Prepare a document for signature collection: one signing link per contact
that owns fields in the document. Progress is reported as tool-status data
parts. No emails or notifications are sent.
"""

import logging
import sqlite3

from parley.tools.documents import owned_document

logger = logging.getLogger(__name__)


class SendDocumentForSigningTool:
    name = "sendDocumentForSigning"
    description = (
        "Send a document for signing by generating unique signing links for "
        "each contact associated with fields in the document. This prepares "
        "the document for signature collection. It does not collect emails "
        "or send notifications."
    )
    parameters = {
        "type": "object",
        "properties": {
            "documentId": {"type": "string", "description": "The ID of the document to prepare for signing."},
        },
        "required": ["documentId"],
    }

    def __init__(self, base_url: str = ""):
        self.base_url = base_url.rstrip("/")

    def _status(self, ctx, status: str, message: str):
        ctx.writer.write_data({
            "type": "tool-status",
            "content": {"toolName": self.name, "status": status, "message": message},
        })

    async def run(self, args: dict, ctx) -> dict:
        document_id = args.get("documentId", "")
        self._status(ctx, "running", "Preparing document for signing...")

        if ctx.caller is None:
            self._status(ctx, "error", "User authentication required.")
            return {"error": "Authentication required"}

        try:
            document = owned_document(ctx, document_id)
            if document is None:
                self._status(ctx, "error", "Document not found.")
                return {"error": "Document not found"}
            title = document.title
            self._status(ctx, "running", f'Generating signing links for "{title}"...')
            links = ctx.store.create_signing_links(document_id)
        except sqlite3.Error as e:
            logger.error("Signing link generation failed for %s: %s", document_id, e)
            self._status(ctx, "error", str(e))
            return {"error": str(e)}

        if not links:
            message = f'No contacts with fields found in "{title}" to generate signing links for.'
            self._status(ctx, "complete", message)
            return {"documentId": document_id, "linksGenerated": 0, "message": message}

        message = (
            f'Successfully generated {len(links)} signing link(s) for "{title}". '
            "You can now manage signing via the document interface."
        )
        self._status(ctx, "complete", message)
        logger.info("Generated %d signing links for document %s", len(links), document_id)
        return {
            "documentId": document_id,
            "linksGenerated": len(links),
            "links": [
                {"url": f"{self.base_url}/{link.token}", "contact_id": link.contact_id}
                for link in links
            ],
            "message": message,
        }
