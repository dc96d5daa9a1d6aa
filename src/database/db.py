from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from src.database.models import Base, IPOApplication, UserAccount
from src.config import Config
from src.ipo.errors import NotFoundError, InsufficientFundsError, StateConflictError
from typing import List, Optional, Tuple
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("pending", "allotted")


class Database:
    def __init__(self, config: Config):
        self.config = config
        db_config = config.get_database()

        if db_config.get("type") == "postgresql":
            db_url = f"postgresql://{db_config.get('user')}:{db_config.get('password')}@{db_config.get('host')}:{db_config.get('port', 5432)}/{db_config.get('database')}"
            connect_args = {}
        else:
            db_url = f"sqlite:///{db_config.get('path', 'ipo_market.db')}"
            # scheduler write-backs run in worker threads
            connect_args = {"check_same_thread": False}

        self.engine = create_engine(db_url, echo=False, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        return self.SessionLocal()

    # -- user ledger --------------------------------------------------------

    def create_user(self, username: str, balance: float = 0.0) -> UserAccount:
        session = self.get_session()
        try:
            user = UserAccount(username=username, balance=balance)
            session.add(user)
            session.commit()
            return user
        except Exception as e:
            session.rollback()
            logger.error(f"Error creating user: {e}")
            raise
        finally:
            session.close()

    def get_balance(self, user_id: int) -> float:
        session = self.get_session()
        try:
            user = session.get(UserAccount, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            return user.balance
        finally:
            session.close()

    def credit_balance(self, user_id: int, amount: float) -> float:
        return self._adjust_balance(user_id, amount)

    def _adjust_balance(self, user_id: int, delta: float) -> float:
        session = self.get_session()
        try:
            user = session.get(UserAccount, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            if user.balance + delta < 0:
                raise InsufficientFundsError(
                    f"Insufficient balance: {user.balance:.2f} available, {-delta:.2f} required"
                )
            user.balance = user.balance + delta
            session.commit()
            return user.balance
        except Exception as e:
            session.rollback()
            logger.error(f"Error adjusting balance for user {user_id}: {e}")
            raise
        finally:
            session.close()

    # -- applications -------------------------------------------------------

    def add_application(
        self,
        user_id: int,
        ipo_id: str,
        ipo_symbol: str,
        ipo_name: str,
        amount_applied: float,
        shares_applied: int,
        status: str = "pending",
    ) -> IPOApplication:
        session = self.get_session()
        try:
            app = IPOApplication(
                user_id=user_id,
                ipo_id=ipo_id,
                ipo_symbol=ipo_symbol,
                ipo_name=ipo_name,
                amount_applied=amount_applied,
                shares_applied=shares_applied,
                status=status,
            )
            session.add(app)
            session.commit()
            return app
        except Exception as e:
            session.rollback()
            logger.error(f"Error adding application: {e}")
            raise
        finally:
            session.close()

    def open_application(
        self,
        user_id: int,
        ipo_id: str,
        ipo_symbol: str,
        ipo_name: str,
        amount_applied: float,
        shares_applied: int,
    ) -> Tuple[IPOApplication, float]:
        """Block the applied amount and record a pending application in one transaction."""
        session = self.get_session()
        try:
            user = session.get(UserAccount, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            if user.balance < amount_applied:
                raise InsufficientFundsError(
                    f"Insufficient balance: {user.balance:.2f} available, {amount_applied:.2f} required"
                )
            user.balance = user.balance - amount_applied
            app = IPOApplication(
                user_id=user_id,
                ipo_id=ipo_id,
                ipo_symbol=ipo_symbol,
                ipo_name=ipo_name,
                amount_applied=amount_applied,
                shares_applied=shares_applied,
                status="pending",
            )
            session.add(app)
            session.commit()
            return app, user.balance
        except Exception as e:
            session.rollback()
            logger.error(f"Error opening application for user {user_id}: {e}")
            raise
        finally:
            session.close()

    def withdraw_application(self, application_id: int, user_id: int, amount: float) -> float:
        """Release ``amount`` to the user and mark the application withdrawn in one transaction.

        Returns the new balance.
        """
        session = self.get_session()
        try:
            app = session.query(IPOApplication).filter_by(id=application_id, user_id=user_id).first()
            if app is None:
                raise NotFoundError(f"Application {application_id} not found")
            if app.is_withdrawn or app.status == "refunded":
                raise StateConflictError("Application already withdrawn")
            user = session.get(UserAccount, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")

            user.balance = user.balance + amount
            app.status = "refunded"
            app.refund_amount = amount
            app.is_withdrawn = True
            app.withdrawal_date = datetime.now(timezone.utc)
            session.commit()
            return user.balance
        except Exception as e:
            session.rollback()
            logger.error(f"Error withdrawing application {application_id}: {e}")
            raise
        finally:
            session.close()

    def get_application(self, application_id: int, user_id: Optional[int] = None) -> Optional[IPOApplication]:
        session = self.get_session()
        try:
            query = session.query(IPOApplication).filter_by(id=application_id)
            if user_id is not None:
                query = query.filter_by(user_id=user_id)
            return query.first()
        finally:
            session.close()

    def find_active_application(self, ipo_symbol: str, user_id: int) -> Optional[IPOApplication]:
        """Latest non-withdrawn application for (symbol, user)."""
        session = self.get_session()
        try:
            return (
                session.query(IPOApplication)
                .filter_by(ipo_symbol=ipo_symbol, user_id=user_id, is_withdrawn=False)
                .order_by(IPOApplication.application_date.desc())
                .first()
            )
        finally:
            session.close()

    def find_open_application(self, ipo_symbol: str, user_id: int) -> Optional[IPOApplication]:
        session = self.get_session()
        try:
            return (
                session.query(IPOApplication)
                .filter(
                    IPOApplication.ipo_symbol == ipo_symbol,
                    IPOApplication.user_id == user_id,
                    IPOApplication.status.in_(ACTIVE_STATUSES),
                    IPOApplication.is_withdrawn.is_(False),
                )
                .first()
            )
        finally:
            session.close()

    def get_applications_by_symbol(self, ipo_symbol: str, status: str) -> List[IPOApplication]:
        session = self.get_session()
        try:
            return (
                session.query(IPOApplication)
                .filter_by(ipo_symbol=ipo_symbol, status=status, is_withdrawn=False)
                .order_by(IPOApplication.application_date)
                .all()
            )
        finally:
            session.close()

    def get_active_applications(self) -> List[IPOApplication]:
        session = self.get_session()
        try:
            return (
                session.query(IPOApplication)
                .filter(
                    IPOApplication.is_withdrawn.is_(False),
                    IPOApplication.status != "refunded",
                )
                .order_by(IPOApplication.application_date)
                .all()
            )
        finally:
            session.close()

    def update_application(self, application_id: int, **fields) -> Optional[IPOApplication]:
        session = self.get_session()
        try:
            app = session.get(IPOApplication, application_id)
            if app is None:
                return None
            for name, value in fields.items():
                setattr(app, name, value)
            session.commit()
            return app
        except Exception as e:
            session.rollback()
            logger.error(f"Error updating application {application_id}: {e}")
            raise
        finally:
            session.close()
