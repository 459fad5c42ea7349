"""Counter model"""
from roadside import db


class Counter(db.Model):
    """
    Named integer sequence

    Incremented with a single UPDATE so that concurrent writers serialize on
    the row instead of reading and incrementing in application code.
    """
    __tablename__ = 'counters'

    name = db.Column(db.String(50), primary_key=True)
    value = db.Column(db.BigInteger, nullable=False)

    def __repr__(self):
        return f'<Counter {self.name}={self.value}>'
