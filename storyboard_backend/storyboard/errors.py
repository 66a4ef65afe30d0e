class StoryboardError(Exception):
    """Base class for every error the storyboard pipeline raises on purpose."""


class CredentialMissing(StoryboardError):
    def __init__(self, message: str = "API_KEY_MISSING: set an API key or select a project"):
        super().__init__(message)


class CredentialInvalid(StoryboardError):
    pass


class SceneNotFound(StoryboardError):
    pass


class GatewayError(StoryboardError):
    """A provider or transport failure, converted at the gateway boundary."""


class StructureDraftFailed(GatewayError):
    pass


class TitleDraftFailed(GatewayError):
    pass


class MotionPromptFailed(GatewayError):
    pass


class SceneRenderFailed(GatewayError):
    pass


class NoImageProduced(SceneRenderFailed):
    def __init__(self, message: str = "Failed to produce image."):
        super().__init__(message)
