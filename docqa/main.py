"""Quart HTTP service for the document Q&A system."""
from typing import Optional
from quart import Quart, request, jsonify
import structlog

from docqa import config
from docqa.errors import DimensionMismatch, ProviderError, StoreUnavailable
from docqa.logging_config import configure_logging
from docqa.service import DocumentQA

configure_logging()

logger = structlog.get_logger()


def create_app(qa: Optional[DocumentQA] = None) -> Quart:
    """Build the Quart app around a DocumentQA facade.

    Args:
        qa: Facade to serve (a default one is created if omitted). The store
            is opened when the server starts and closed when it stops.
    """
    app = Quart(__name__)
    qa = qa or DocumentQA()

    @app.before_serving
    async def open_store():
        await qa.store.open()

    @app.after_serving
    async def close_store():
        await qa.store.close()

    @app.route("/api/ingest", methods=["POST"])
    async def ingest():
        """Ingest a file or directory.

        Expects JSON body:
        {
            "path": "docs/",
            "recursive": true,  // optional, defaults to true
            "type": "md"        // optional file type filter
        }
        """
        data = await request.get_json(silent=True)

        if not data or not str(data.get("path", "")).strip():
            return jsonify({"error": "Missing 'path' in request body"}), 400

        try:
            report = await qa.ingest(
                str(data["path"]).strip(),
                recursive=bool(data.get("recursive", True)),
                type_filter=data.get("type"),
            )
        except FileNotFoundError as e:
            return jsonify({"error": str(e)}), 404
        except StoreUnavailable as e:
            logger.error("ingest_endpoint_store_error", error=str(e))
            return jsonify({"error": "Vector store unavailable"}), 503

        return jsonify(report.to_dict())

    @app.route("/api/ask", methods=["POST"])
    async def ask():
        """Answer a question from the ingested documents.

        Expects JSON body:
        {
            "question": "question text",
            "k": 4  // optional number of chunks to retrieve
        }
        """
        data = await request.get_json(silent=True)

        if not data or "question" not in data:
            return jsonify({"error": "Missing 'question' in request body"}), 400

        question = str(data["question"]).strip()
        if not question:
            return jsonify({"error": "Question cannot be empty"}), 400

        if len(question) > config.MAX_QUESTION_LENGTH:
            return jsonify({
                "error": f"Question too long (max {config.MAX_QUESTION_LENGTH} characters)"
            }), 400

        k = data.get("k")
        if k is not None and (not isinstance(k, int) or isinstance(k, bool) or k <= 0):
            return jsonify({"error": "'k' must be a positive integer"}), 400

        try:
            result = await qa.answer(question, k=k)
        except ProviderError as e:
            logger.error("ask_endpoint_provider_error", error=str(e))
            return jsonify({"error": "Language model service failed"}), 502
        except DimensionMismatch as e:
            logger.error("ask_endpoint_dimension_mismatch", error=str(e))
            return jsonify({"error": str(e)}), 409
        except StoreUnavailable as e:
            logger.error("ask_endpoint_store_error", error=str(e))
            return jsonify({"error": "Vector store unavailable"}), 503

        return jsonify(result.to_dict())

    @app.route("/api/stats", methods=["GET"])
    async def stats():
        try:
            store_stats = await qa.stats()
        except StoreUnavailable as e:
            logger.error("stats_endpoint_store_error", error=str(e))
            return jsonify({"error": "Vector store unavailable"}), 503
        return jsonify(store_stats.to_dict())

    @app.route("/api/documents", methods=["DELETE"])
    async def delete_documents():
        """Delete one source (``?source=...``) or, without a source, everything."""
        source = request.args.get("source")

        try:
            if source:
                deleted = await qa.delete(source)
            else:
                deleted = await qa.clear()
        except StoreUnavailable as e:
            logger.error("delete_endpoint_store_error", error=str(e))
            return jsonify({"error": "Vector store unavailable"}), 503

        return jsonify({"deleted": deleted, "source": source})

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check the store and the model service."""
        checks = {
            "status": "healthy",
            "store": False,
            "models": False,
        }

        try:
            await qa.stats()
            checks["store"] = True

            list_models = getattr(qa.generator, "list_models", None)
            if list_models is not None:
                models = await list_models()
                required = (
                    getattr(qa.generator, "chat_model", config.CHAT_MODEL),
                    getattr(qa.embedder, "embedding_model", config.EMBEDDING_MODEL),
                )
                missing = [m for m in required if m not in models]
                if missing:
                    checks["status"] = "unhealthy"
                    checks["error"] = f"Missing models: {', '.join(missing)}"
                else:
                    checks["models"] = True
            else:
                checks["models"] = True

        except (ProviderError, StoreUnavailable) as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = str(e)

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
