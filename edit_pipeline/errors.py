class PipelineError(Exception):
    pass


class EngineLoadError(PipelineError):
    pass


class EngineStateError(PipelineError):
    pass


class StagingError(PipelineError):
    pass


class EngineExecError(PipelineError):
    def __init__(self, message: str, returncode: int | None = None, output_tail: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output_tail = output_tail
