"""
Tests for the errors module.
"""

from neo4j.exceptions import ServiceUnavailable

from regintel_graph.errors import (
    ClientError,
    MalformedRowError,
    ModelValidationError,
    Neo4jConnectionError,
    Neo4jConstraintError,
    Neo4jError,
    Neo4jQueryError,
    PhaseError,
    PipelineError,
    RegIntelGraphError,
    SchemaMismatchError,
    SourceViewError,
    TemplateError,
    wrap_neo4j_error,
)


class TestErrorHierarchy:
    """Test error class hierarchy."""

    def test_base_error_with_context(self):
        """Test that base error captures context."""
        error = RegIntelGraphError(
            "Something went wrong",
            context={"view": "vw_approved_drugs", "rows": 3},
        )

        assert error.message == "Something went wrong"
        assert error.context == {"view": "vw_approved_drugs", "rows": 3}
        assert "vw_approved_drugs" in str(error)

    def test_base_error_without_context(self):
        """Test error without context."""
        error = RegIntelGraphError("Simple error")

        assert error.context == {}
        assert str(error) == "Simple error"

    def test_pipeline_error_inheritance(self):
        for cls in (ModelValidationError, SchemaMismatchError, MalformedRowError, TemplateError):
            assert issubclass(cls, PipelineError)
        assert issubclass(PipelineError, RegIntelGraphError)

    def test_client_error_inheritance(self):
        """Test client error hierarchy."""
        for cls in (Neo4jConnectionError, Neo4jQueryError, Neo4jConstraintError):
            assert issubclass(cls, Neo4jError)
        assert issubclass(Neo4jError, ClientError)
        assert issubclass(SourceViewError, ClientError)
        assert not issubclass(SourceViewError, Neo4jError)

    def test_phase_error_records_phase(self):
        error = PhaseError("View read failed", phase="entity_sync:Trial", context={"view": "vw_approved_trials"})

        assert error.phase == "entity_sync:Trial"
        assert error.context == {"view": "vw_approved_trials", "phase": "entity_sync:Trial"}
        assert "entity_sync:Trial" in str(error)


class TestErrorWrapping:
    """Test error wrapping utilities."""

    def test_wrap_service_unavailable(self):
        wrapped = wrap_neo4j_error(ServiceUnavailable("Unable to retrieve routing information"))

        assert isinstance(wrapped, Neo4jConnectionError)
        assert wrapped.context["error_type"] == "ServiceUnavailable"

    def test_wrap_connection_message(self):
        """Test wrapping connection errors recognised by message."""
        wrapped = wrap_neo4j_error(Exception("Failed to obtain a connection from the pool within 60.0s"))
        assert isinstance(wrapped, Neo4jConnectionError)

    def test_wrap_constraint_error(self):
        """Test wrapping constraint violations."""
        original = Exception("Node(12) already exists with label `Drug` and property `drugId` = 'x'; unique constraint")
        wrapped = wrap_neo4j_error(original, {"label": "Drug"})

        assert isinstance(wrapped, Neo4jConstraintError)
        assert wrapped.context["label"] == "Drug"
        assert wrapped.context["original_error"] == str(original)

    def test_wrap_query_error(self):
        """Anything else is a query error."""
        wrapped = wrap_neo4j_error(Exception("Invalid input 'MERG'"))
        assert isinstance(wrapped, Neo4jQueryError)

    def test_already_wrapped_passes_through(self):
        original = Neo4jQueryError("bad query")
        assert wrap_neo4j_error(original) is original
