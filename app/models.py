from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .db import Base


class Farm(Base):
    __tablename__ = "farms"

    id = Column(Integer, primary_key=True)
    # null until the name pass matches the farm by contract number
    name = Column(String(255), nullable=True, index=True)
    name2 = Column(String(255), nullable=True)
    voting_contact = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone_number = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    addresses = relationship("FarmAddress", back_populates="farm", cascade="all", passive_deletes=True)
    contracts = relationship("Contract", back_populates="farm", cascade="all", passive_deletes=True)


class FarmAddress(Base):
    __tablename__ = "farm_addresses"
    __table_args__ = (
        UniqueConstraint("farm_id", "street", "city", "state", "postal_code"),
    )

    id = Column(Integer, primary_key=True)
    farm_id = Column(Integer, ForeignKey("farms.id", ondelete="CASCADE"), nullable=False, index=True)
    street = Column(String(255), nullable=True)
    street2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True, index=True)
    state = Column(String(100), nullable=True, index=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(100), nullable=True)

    # both null until geocoded
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    farm = relationship("Farm", back_populates="addresses")


class Contract(Base):
    __tablename__ = "contracts"
    __table_args__ = (
        UniqueConstraint("api_contract_id", "crop_year"),
    )

    id = Column(Integer, primary_key=True)
    api_contract_id = Column(Integer, nullable=False, index=True)
    contract_number = Column(String(20), nullable=False, index=True)
    farm_id = Column(Integer, ForeignKey("farms.id", ondelete="CASCADE"), nullable=True, index=True)
    crop_year = Column(Integer, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    farm = relationship("Farm", back_populates="contracts")
    bed_blocks = relationship("BedBlock", back_populates="contract", cascade="all", passive_deletes=True)
    beds = relationship("Bed", back_populates="contract", cascade="all", passive_deletes=True)


class BedBlock(Base):
    __tablename__ = "bed_blocks"
    __table_args__ = (
        UniqueConstraint("contract_id", "name"),
    )

    id = Column(Integer, primary_key=True)
    contract_id = Column(Integer, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    contract = relationship("Contract", back_populates="bed_blocks")


class Bed(Base):
    __tablename__ = "beds"

    id = Column(Integer, primary_key=True)
    api_bed_history_id = Column(Integer, nullable=False, unique=True, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True)
    bed_block_id = Column(Integer, ForeignKey("bed_blocks.id", ondelete="SET NULL"), nullable=True, index=True)
    farm_address_id = Column(Integer, ForeignKey("farm_addresses.id", ondelete="SET NULL"), nullable=True, index=True)
    bed_name = Column(String(100), nullable=True)
    handler_section_name = Column(String(50), nullable=True)
    acres = Column(Float, nullable=True)
    variety = Column(String(100), nullable=True, index=True)
    plant_date = Column(Date, nullable=True)

    # independent flags, not mutually exclusive
    fruit_type_export = Column(Boolean, nullable=False, default=False)
    fruit_type_global_gap = Column(Boolean, nullable=False, default=False)
    fruit_type_organic = Column(Boolean, nullable=False, default=False)
    fruit_type_processed = Column(Boolean, nullable=False, default=False)
    fruit_type_white = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    contract = relationship("Contract", back_populates="beds")
    bed_block = relationship("BedBlock")
    farm_address = relationship("FarmAddress")
    shapes = relationship("Shape", back_populates="bed", cascade="all", passive_deletes=True)


class Shape(Base):
    __tablename__ = "shapes"

    id = Column(Integer, primary_key=True)
    bed_id = Column(Integer, ForeignKey("beds.id", ondelete="CASCADE"), nullable=False, index=True)
    shape_type = Column(String(50), nullable=True)
    shape_value = Column(Text, nullable=True)  # "((lon,lat),(lon,lat),...)"

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    bed = relationship("Bed", back_populates="shapes")
