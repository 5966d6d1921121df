"""GraphQL operation documents sent to the PixAI API."""

from __future__ import annotations

TASK_FIELDS = """
fragment TaskBase on Task {
  id
  userId
  parameters
  outputs
  status
  priority
  createdAt
  updatedAt
}
"""

MEDIA_FIELDS = """
fragment MediaBase on Media {
  id
  type
  width
  height
  urls {
    variant
    url
  }
}
"""

CREATE_GENERATION_TASK = (
    """
mutation createGenerationTask($parameters: JSONObject!) {
  createGenerationTask(parameters: $parameters) {
    ...TaskBase
  }
}
"""
    + TASK_FIELDS
)

GET_TASK = (
    """
query getTaskById($id: ID!) {
  task(id: $id) {
    ...TaskBase
  }
}
"""
    + TASK_FIELDS
)

SUBSCRIBE_PERSONAL_EVENTS = (
    """
subscription subscribePersonalEvents {
  personalEvents {
    taskUpdated {
      ...TaskBase
    }
  }
}
"""
    + TASK_FIELDS
)

GET_MEDIA = (
    """
query getMediaById($id: String!) {
  media(id: $id) {
    ...MediaBase
  }
}
"""
    + MEDIA_FIELDS
)

UPLOAD_MEDIA = """
mutation uploadMedia($input: UploadMediaInput!) {
  uploadMedia(input: $input) {
    externalId
    uploadUrl
  }
}
"""

REGISTER_MEDIA = (
    """
mutation registerMedia($input: RegisterMediaInput!) {
  registerMedia(input: $input) {
    ...MediaBase
  }
}
"""
    + MEDIA_FIELDS
)


def is_subscription(document: str) -> bool:
    return document.lstrip().startswith("subscription")


__all__ = [
    "CREATE_GENERATION_TASK",
    "GET_MEDIA",
    "GET_TASK",
    "REGISTER_MEDIA",
    "SUBSCRIBE_PERSONAL_EVENTS",
    "UPLOAD_MEDIA",
    "is_subscription",
]
