from abc import ABC, abstractmethod


class AbstractPasswordResetProvider(ABC):
	"""Interface for the hosted platform that emails password reset links."""

	@abstractmethod
	async def send_reset(self, email: str, *, redirect_to: str) -> None:
		"""Ask the platform to send a password reset email.

		Args:
			email: Normalized account email address.
			redirect_to: URL the reset link should land on.

		Raises:
			AuthProviderAppError: If the platform call fails.
		"""
		...

	async def close(self) -> None:
		"""Release network resources held by the provider."""
		return None
