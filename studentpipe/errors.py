class PipelineError(Exception):
    pass


class MissingHeaderError(PipelineError, ValueError):
    pass


class StorageError(PipelineError):
    pass


class SheetReadError(PipelineError, OSError):
    pass
