from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.documents.models import DocumentSequence


class DocumentNumberGenerator:
    """
    Generates sequential document numbers in format: PREFIX-[S<school>-]YYYY-NNNNNN

    Sequences are kept per school, so numbers carry the school id to stay globally unique:
        INV-S1-2026-000001
        PAY-S12-2026-000042
    """

    def __init__(self, session: AsyncSession, school_id: int):
        self.session = session
        self.school_id = school_id

    async def generate(self, prefix: str, year: int) -> str:
        """
        Generate next document number for given prefix and year.

        Uses SELECT FOR UPDATE to ensure uniqueness in concurrent scenarios.
        """
        stmt = (
            select(DocumentSequence)
            .where(
                DocumentSequence.school_id == self.school_id,
                DocumentSequence.prefix == prefix,
                DocumentSequence.year == year,
            )
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        sequence = result.scalar_one_or_none()

        if sequence is None:
            sequence = DocumentSequence(
                school_id=self.school_id, prefix=prefix, year=year, last_number=0
            )
            self.session.add(sequence)
            await self.session.flush()

            # Re-fetch with lock
            result = await self.session.execute(stmt)
            sequence = result.scalar_one()

        sequence.last_number += 1
        await self.session.flush()

        return f"{prefix}-S{self.school_id}-{year}-{sequence.last_number:06d}"
