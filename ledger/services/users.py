"""User registration and lookup."""

from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ledger.db.models import User
from ledger.db.session import LedgerStore
from ledger.errors import EmailAlreadyRegistered, UserNotFound
from ledger.identity import lookup_identity, normalize_email, resolve_identity
from ledger.log import get_logger
from ledger.schemas import RegistrationRequest
from ledger.services.impact import get_impact_stats, list_reward_history
from ledger.services.referrals import assign_code, bind_referral, generate_code

logger = get_logger(__name__)


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "identity": user.identity,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "referral_code": user.referral_code,
        "referred_by": user.referred_by,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


class UserService:
    """Registers users and answers identity-keyed queries."""

    def __init__(self, store: LedgerStore, code_generator: Callable[[], str] = generate_code):
        self.store = store
        self.code_generator = code_generator

    def register(self, registration: RegistrationRequest) -> Dict[str, Any]:
        """Create a user, or update the profile of an existing identity.

        A referral code supplied with the registration is bound inside the
        same transaction, so an invalid code leaves no user row behind. The
        user is assigned their own referral code before commit.

        Args:
            registration: Validated registration request

        Returns:
            User profile dict

        Raises:
            InvalidIdentity: If the wallet address is malformed
            EmailAlreadyRegistered: If the email belongs to another identity
            InvalidReferralCode, AlreadyReferred, SelfReferral: From binding
            CodeGenerationExhausted: If no referral code could be assigned
        """
        identity = resolve_identity(address=registration.address, email=registration.email)

        with self.store.session() as session:
            owner = session.query(User).filter(User.email == registration.email).first()
            if owner is not None and owner.identity != identity:
                raise EmailAlreadyRegistered(registration.email)

            user = session.get(User, identity)
            if user is None:
                user = User(
                    identity=identity,
                    name=registration.name,
                    email=registration.email,
                    phone=registration.phone,
                )
                session.add(user)
                logger.info(f"Registered user {identity}")
            else:
                user.name = registration.name
                user.email = registration.email
                user.phone = registration.phone
                logger.info(f"Updated profile for {identity}")
            session.flush()

            if registration.referral_code:
                bind_referral(session, identity, registration.referral_code)

            assign_code(session, identity, self.code_generator)
            return user_to_dict(session.get(User, identity))

    def get_user(self, identity: str) -> Dict[str, Any]:
        with self.store.session() as session:
            identity = lookup_identity(session, identity)
            return user_to_dict(self._get(session, identity))

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        email = normalize_email(email)
        with self.store.session() as session:
            user = session.query(User).filter(User.email == email).first()
            return user_to_dict(user) if user else None

    def get_impact_stats(self, identity: str) -> Dict[str, Any]:
        """Impact score, totals, referral data and reward balance for a user."""
        with self.store.session() as session:
            identity = lookup_identity(session, identity)
            return get_impact_stats(session, identity).to_dict()

    def get_reward_history(self, identity: str, limit: int = 50) -> list:
        with self.store.session() as session:
            identity = lookup_identity(session, identity)
            return list_reward_history(session, identity, limit)

    @staticmethod
    def _get(session: Session, identity: str) -> User:
        user = session.get(User, identity)
        if user is None:
            raise UserNotFound(identity)
        return user
