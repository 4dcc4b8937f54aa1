from .base import Base, Column, String, DateTime, Boolean


class User(Base):
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(120), default="")
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default="CUSTOMER")  # CUSTOMER/ADMIN
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    def verify_password(self, password: str) -> bool:
        from core.auth import pwd_context
        return pwd_context.verify(password, self.password_hash)
