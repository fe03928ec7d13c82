"""
Synthesis Exceptions

Error taxonomy shared by the schema registry, generators, synthesizer,
validation layer and orchestrator.
"""

from typing import Any, Optional


class LabSynthError(Exception):
    """Base class for all synthesis errors"""

    pass


class InvalidConfiguration(LabSynthError):
    """Run configuration is unusable (bad date range, seed or mode). Fatal to the run."""

    pass


class ReferenceLookupError(LabSynthError):
    """A schema or reference lookup key is absent"""

    kind = "key"

    def __init__(self, key: Any):
        self.key = key
        super().__init__(f"Unknown {self.kind}: {key!r}")


class UnknownFamily(ReferenceLookupError):
    """Dataset family is not registered"""

    kind = "family"


class UnknownSection(ReferenceLookupError):
    """Lab section code is not in the reference set"""

    kind = "section"


class UnknownCategory(ReferenceLookupError):
    """Test category is not in the reference set"""

    kind = "category"


class SchemaMismatch(LabSynthError):
    """Source table columns do not match the expected sub-table schema"""

    def __init__(self, family: str, sub_table: str, missing: Optional[list] = None, detail: str = ""):
        self.family = family
        self.sub_table = sub_table
        self.missing = list(missing or [])
        message = f"Source for {family}.{sub_table} does not match schema"
        if self.missing:
            message += f"; missing columns: {', '.join(self.missing)}"
        if detail:
            message += f"; {detail}"
        super().__init__(message)


class ValidationFailure(LabSynthError):
    """Generated data violates one or more declared invariants"""

    def __init__(self, report):
        self.report = report
        super().__init__(
            f"{report.family}: {len(report.violations)} invariant violation(s)"
        )


class PersistenceFailure(LabSynthError):
    """Writing a dataset to its output location failed"""

    def __init__(self, path, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to write {path}: {cause}")


class SourceReadFailure(LabSynthError):
    """Reading a real source table failed"""

    def __init__(self, path, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to read source {path}: {cause}")
