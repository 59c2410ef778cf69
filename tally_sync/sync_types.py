from __future__ import annotations
from typing import Any, Literal
from pydantic import BaseModel, Field

Operation = Literal["replace", "upsert", "append"]
IngestOperation = Literal["insert", "update", "upsert", "delete"]
ImportType = Literal["full_sync", "incremental", "master_only", "transaction_only"]
RowAction = Literal["inserted", "updated", "ignored"]

OPERATIONS: tuple[str, ...] = ("replace", "upsert", "append")


class TablePayload(BaseModel):
    table_name: str
    operation: Operation
    data: list[dict[str, Any]]


class BulkImportRequest(BaseModel):
    api_key: str
    company_id: str
    division_id: str
    import_type: ImportType = "full_sync"
    batch_size: int | None = None
    tables: list[TablePayload]


class IngestRequest(BaseModel):
    api_key: str
    data_type: Literal["master", "transaction", "bulk"]
    table_name: str
    operation: IngestOperation
    company_id: str
    division_id: str
    data: list[dict[str, Any]]


class TableResult(BaseModel):
    table_name: str
    success: bool = True
    processed_count: int = 0
    failed_count: int = 0
    errors: list[str] = Field(default_factory=list)

    def fail(self, message: str, failed: int = 0) -> "TableResult":
        self.success = False
        self.failed_count += failed
        self.errors.append(message)
        return self


class ImportSummary(BaseModel):
    success: bool
    message: str
    total_processed: int = 0
    total_failed: int = 0
    table_results: list[TableResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[TableResult]) -> "ImportSummary":
        processed = sum(r.processed_count for r in results)
        failed = sum(r.failed_count for r in results)
        ok = all(r.success for r in results)
        return cls(
            success=ok,
            message=f"Bulk import completed. Processed: {processed}, Failed: {failed}",
            total_processed=processed,
            total_failed=failed,
            table_results=results,
        )


class ChangeSummary(BaseModel):
    table: str
    inserted: int = 0
    updated: int = 0
    ignored: int = 0

    def add(self, action: RowAction):
        setattr(self, action, getattr(self, action) + 1)

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.ignored


class ValidationResult(BaseModel):
    table: str
    record_count: int = 0
    missing_references: int = 0
    duplicates: int = 0
    issues: list[str] = Field(default_factory=list)

    @property
    def issue_count(self) -> int:
        return self.missing_references + self.duplicates + len(self.issues)


class ValidationReport(BaseModel):
    results: list[ValidationResult]

    @property
    def total_records(self) -> int:
        return sum(r.record_count for r in self.results)

    @property
    def total_issues(self) -> int:
        return sum(r.issue_count for r in self.results)

    @property
    def health_score(self) -> float:
        """0-100; 100 when there is nothing to validate."""
        if self.total_records == 0:
            return 100.0
        return max(0.0, 100.0 - (self.total_issues / self.total_records) * 100.0)

    @property
    def success(self) -> bool:
        return self.total_issues == 0

    @property
    def message(self) -> str:
        return (
            f"Validation completed. Health Score: {self.health_score:.1f}%. "
            f"{self.total_issues} issues found."
        )


class SourceComparison(BaseModel):
    """Row counts and GUID drift between a table, its backup and its vt copy."""

    table: str
    legacy_count: int = 0
    backup_count: int = 0
    vt_count: int = 0
    missing_in_backup: list[str] = Field(default_factory=list)
    missing_in_vt: list[str] = Field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return (
            self.legacy_count == self.backup_count == self.vt_count
            and not self.missing_in_backup
            and not self.missing_in_vt
        )
