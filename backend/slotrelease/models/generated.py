from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, Table, Text, UniqueConstraint, text

from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class Devices(Base):
    __tablename__ = 'devices'

    name = Column(Text, nullable=False)
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    category = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    working_hours = relationship('DeviceWorkingHours', back_populates='device')
    exceptions = relationship('DeviceExceptions', back_populates='device')
    time_slots = relationship('TimeSlots', back_populates='device')


class DeviceWorkingHours(Base):
    """
    Either day_of_week (0 = Monday) or on_date is set.

    on_date rows override the recurring weekday row for that date.
    """
    __tablename__ = 'device_working_hours'

    device_id = Column(ForeignKey('devices.id', ondelete='CASCADE'), nullable=False)
    start_time = Column(Text, nullable=False)
    end_time = Column(Text, nullable=False)
    id = Column(Integer, primary_key=True)
    day_of_week = Column(Integer)
    on_date = Column(Date)

    device = relationship('Devices', back_populates='working_hours')


class DeviceExceptions(Base):
    __tablename__ = 'device_exceptions'
    __table_args__ = (
        UniqueConstraint('device_id', 'exception_date'),
    )

    device_id = Column(ForeignKey('devices.id', ondelete='CASCADE'), nullable=False)
    exception_date = Column(Date, nullable=False)
    id = Column(Integer, primary_key=True)
    reason = Column(Text)

    device = relationship('Devices', back_populates='exceptions')


t_examination_devices = Table(
    'examination_devices', metadata,
    Column('examination_id', ForeignKey('examinations.id', ondelete='CASCADE'), primary_key=True),
    Column('device_id', ForeignKey('devices.id', ondelete='CASCADE'), primary_key=True),
)


class Examinations(Base):
    __tablename__ = 'examinations'

    name = Column(Text, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    body_side_required = Column(Integer, nullable=False, server_default=text('0'))
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    category = Column(Text)

    devices = relationship('Devices', secondary=t_examination_devices)
    time_slots = relationship('TimeSlots', back_populates='examination')


class TimeSlots(Base):
    __tablename__ = 'time_slots'
    __table_args__ = (
        Index('ix_time_slots_group', 'examination_id', 'slot_date', 'status'),
        Index('ix_time_slots_device_start', 'device_id', 'start_time'),
    )

    device_id = Column(ForeignKey('devices.id', ondelete='CASCADE'), nullable=False)
    examination_id = Column(ForeignKey('examinations.id', ondelete='CASCADE'), nullable=False)
    slot_date = Column(Date, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'blocked'"))
    id = Column(Integer, primary_key=True)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    device = relationship('Devices', back_populates='time_slots')
    examination = relationship('Examinations', back_populates='time_slots')
    appointment = relationship('Appointments', uselist=False, back_populates='slot')


class Appointments(Base):
    __tablename__ = 'appointments'

    slot_id = Column(ForeignKey('time_slots.id'), nullable=False, unique=True)
    patient_data = Column(Text, nullable=False, server_default=text("'{}'"))
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    created_at = Column(DateTime, nullable=False)
    id = Column(Integer, primary_key=True)
    doctor_id = Column(Text)
    insurance_type = Column(Text)
    body_side = Column(Text)
    cancelled_at = Column(DateTime)

    slot = relationship('TimeSlots', back_populates='appointment')
