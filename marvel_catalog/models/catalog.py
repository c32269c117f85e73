"""
Catalog Models - Local mirror of the Marvel public API

Entities are keyed internally by id and externally by marvel_id.
Cross-entity references are stored as recorded external ids at import
time (marvel_id_serie, marvel_ids_character, creators) and resolved into
real relations by the relationship linker once every type is imported.
"""
from sqlalchemy import Column, Integer, String, Text, Date, DateTime, ForeignKey, Table, JSON, Index
from sqlalchemy.orm import relationship
from marvel_catalog.core.database import Base
from marvel_catalog.core.utils import utcnow


# Many-to-many association tables
comic_characters = Table(
    'comic_characters',
    Base.metadata,
    Column('comic_id', Integer, ForeignKey('comics.id', ondelete='CASCADE'), primary_key=True),
    Column('character_id', Integer, ForeignKey('characters.id', ondelete='CASCADE'), primary_key=True)
)

serie_characters = Table(
    'serie_characters',
    Base.metadata,
    Column('serie_id', Integer, ForeignKey('series.id', ondelete='CASCADE'), primary_key=True),
    Column('character_id', Integer, ForeignKey('characters.id', ondelete='CASCADE'), primary_key=True)
)

# Creator credits, derived from the embedded creators lists
comic_creators = Table(
    'comic_creators',
    Base.metadata,
    Column('comic_id', Integer, ForeignKey('comics.id', ondelete='CASCADE'), primary_key=True),
    Column('creator_id', Integer, ForeignKey('creators.id', ondelete='CASCADE'), primary_key=True),
    Column('role', String(100), primary_key=True, default=''),  # writer, penciller, colorist, etc.
    Index('ix_comic_creators_creator_id', 'creator_id'),
)

serie_creators = Table(
    'serie_creators',
    Base.metadata,
    Column('serie_id', Integer, ForeignKey('series.id', ondelete='CASCADE'), primary_key=True),
    Column('creator_id', Integer, ForeignKey('creators.id', ondelete='CASCADE'), primary_key=True),
    Column('role', String(100), primary_key=True, default=''),
    Index('ix_serie_creators_creator_id', 'creator_id'),
)


class Character(Base):
    """Characters - also created as "Unknown {id}" placeholders by the linker"""
    __tablename__ = 'characters'

    id = Column(Integer, primary_key=True)
    marvel_id = Column(Integer, unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    thumbnail = Column(Text)
    modified = Column(String(50))  # Upstream ISO timestamp, kept verbatim

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    comics = relationship("Comic", secondary=comic_characters, back_populates="characters")
    series = relationship("Serie", secondary=serie_characters, back_populates="characters")

    def __repr__(self):
        return f"<Character {self.marvel_id}: {self.name}>"


class Comic(Base):
    """Comic issues"""
    __tablename__ = 'comics'

    id = Column(Integer, primary_key=True)
    marvel_id = Column(Integer, unique=True, index=True, nullable=False)
    title = Column(String(500), nullable=False, index=True)
    description = Column(Text)
    page_count = Column(Integer, default=0)
    thumbnail = Column(Text)
    date = Column(Date)  # On-sale date
    slug = Column(String(500), index=True)  # Derived from title, not unique
    modified = Column(String(50))

    # Recorded at import time
    variants = Column(JSON, default=list)  # [marvel_id, ...]
    creators = Column(JSON, default=list)  # [{"marvelCreatorId": int, "role": str}, ...]
    marvel_id_serie = Column(Integer, index=True)
    marvel_ids_character = Column(JSON, default=list)

    # Resolved by the linker
    serie_id = Column(Integer, ForeignKey('series.id', ondelete='SET NULL'), index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    serie = relationship("Serie", back_populates="comics")
    characters = relationship("Character", secondary=comic_characters, back_populates="comics")

    def __repr__(self):
        return f"<Comic {self.marvel_id}: {self.title}>"


class Creator(Base):
    """Writers, artists, editors"""
    __tablename__ = 'creators'

    id = Column(Integer, primary_key=True)
    marvel_id = Column(Integer, unique=True, index=True, nullable=False)
    first_name = Column(String(255))
    last_name = Column(String(255))
    full_name = Column(String(500))
    thumbnail = Column(Text)
    modified = Column(String(50))

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Creator {self.marvel_id}: {self.full_name}>"


class Serie(Base):
    """Series (volumes)"""
    __tablename__ = 'series'

    id = Column(Integer, primary_key=True)
    marvel_id = Column(Integer, unique=True, index=True, nullable=False)
    title = Column(String(500), nullable=False, index=True)
    description = Column(Text)
    start_year = Column(Integer)
    end_year = Column(Integer)
    thumbnail = Column(Text)
    modified = Column(String(50))

    creators = Column(JSON, default=list)
    marvel_ids_character = Column(JSON, default=list)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    comics = relationship("Comic", back_populates="serie")
    characters = relationship("Character", secondary=serie_characters, back_populates="series")

    def __repr__(self):
        return f"<Serie {self.marvel_id}: {self.title}>"


# Resource type -> model, shared by importer, linker and search sync
MODEL_BY_RESOURCE = {
    "characters": Character,
    "comics": Comic,
    "creators": Creator,
    "series": Serie,
}
