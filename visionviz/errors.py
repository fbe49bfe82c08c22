"""Exception types for the scan -> detect -> select -> visualize pipeline."""


class VisionVizError(Exception):
    """Base class for all pipeline errors."""


class CameraError(VisionVizError):
    """Camera device could not be opened or stopped producing frames."""


class DetectionError(VisionVizError):
    """Text-detection call failed."""


class MalformedResponseError(DetectionError):
    """Detection collaborator answered with something that is not a block list."""


class PlanningError(VisionVizError):
    """Visualization-planning call failed or returned an unusable plan."""


class ScriptCompileError(VisionVizError):
    """2D script text could not be compiled into a draw routine."""

    def __init__(self, message: str, line: int = 0):
        super().__init__(f"line {line}: {message}" if line else message)
        self.line = line


class ScriptRuntimeError(VisionVizError):
    """A single draw invocation failed."""


class RenderError(VisionVizError):
    """3D rendering endpoint failed to produce an asset."""


class MissingEndpointError(RenderError):
    """No 3D rendering endpoint is configured."""
