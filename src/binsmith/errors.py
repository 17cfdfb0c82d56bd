"""Typed error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across API surfaces."""

    VALIDATION = "E_VALIDATION"
    DOWNLOAD = "E_DOWNLOAD"
    HASH_MISMATCH = "E_HASH_MISMATCH"
    RESOURCE_EXHAUSTED = "E_RESOURCE_EXHAUSTED"
    BACKEND_EXECUTION = "E_BACKEND_EXECUTION"
    BUILD_SCRIPT_FAILED = "E_BUILD_SCRIPT_FAILED"
    PRODUCT_MISSING = "E_PRODUCT_MISSING"
    MANIFEST_RESOLUTION = "E_MANIFEST_RESOLUTION"
    PARTITION_ARGUMENT = "E_PARTITION_ARGUMENT"


class BinsmithError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: dict[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(BinsmithError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class DownloadError(BinsmithError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.DOWNLOAD, hint=hint, context=context)


class HashMismatch(BinsmithError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.HASH_MISMATCH, hint=hint, context=context)


class ResourceExhausted(BinsmithError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.RESOURCE_EXHAUSTED, hint=hint, context=context)


class BackendExecutionError(BinsmithError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.BACKEND_EXECUTION, hint=hint, context=context)


class BuildScriptFailed(BinsmithError):
    """The build script exited non-zero inside the sandbox."""

    exit_code: int

    def __init__(
        self,
        exit_code: int,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            f"Build script failed with exit code {exit_code}.",
            code=ErrorCode.BUILD_SCRIPT_FAILED,
            hint=hint,
            context=context,
        )
        self.exit_code = exit_code


class ProductMissing(BinsmithError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.PRODUCT_MISSING, hint=hint, context=context)


class ManifestResolutionError(BinsmithError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.MANIFEST_RESOLUTION, hint=hint, context=context)


class PartitionArgumentError(BinsmithError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.PARTITION_ARGUMENT, hint=hint, context=context)


class UnknownPlatformInAsset(UserWarning):
    """Warning raised when a release asset name encodes no recognisable platform."""


__all__ = [
    "BackendExecutionError",
    "BinsmithError",
    "BuildScriptFailed",
    "DownloadError",
    "ErrorCode",
    "HashMismatch",
    "ManifestResolutionError",
    "PartitionArgumentError",
    "ProductMissing",
    "ResourceExhausted",
    "UnknownPlatformInAsset",
    "ValidationError",
]
