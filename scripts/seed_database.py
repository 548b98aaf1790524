#!/usr/bin/env python3
"""
Script to seed the database with sample data for testing
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta
from app.database import init_db, drop_db, get_db
from app.models import Cleaner, Owner, Property, AvailabilityBlock, Booking
from app.models.availability import AvailabilitySource
from app.models.booking import BookingStatus
from app.utils.security import generate_token
from app.utils.time_utils import today_in
import random


def create_cleaners(db):
    """Create sample cleaners with a few manual blocks each"""
    cleaners = []
    for i, name in enumerate(['Clara', 'Marta', 'Sofia']):
        cleaner = Cleaner(
            user_id=100 + i,
            name=name,
            phone=f'+3461100000{i}',
            hourly_rate=random.choice([16.0, 18.0, 20.0]),
            service_areas=['Alhaurín el Grande', 'Mijas', 'Coín'],
            timezone='Europe/Madrid'
        )
        db.add(cleaner)
        cleaners.append(cleaner)
    db.flush()

    today = today_in('Europe/Madrid')
    for cleaner in cleaners:
        for offset in random.sample(range(1, 14), 3):
            db.add(AvailabilityBlock(
                cleaner_id=cleaner.id,
                date=today + timedelta(days=offset),
                start_time='08:00',
                end_time='12:00',
                is_available=False,
                source=AvailabilitySource.MANUAL,
                title='School run',
                generation=''
            ))
    return cleaners


def create_owners(db):
    """Create sample owners, each with one villa"""
    owners = []
    for i in range(4):
        owner = Owner(
            user_id=200 + i,
            name=f'Owner {i + 1}',
            phone=f'+4477000000{i}'
        )
        db.add(owner)
        db.flush()

        db.add(Property(
            owner_id=owner.id,
            name=f'Villa {i + 1}',
            address=f'Calle Mayor {10 + i}, Alhaurín el Grande',
            bedrooms=random.randint(2, 5),
            bathrooms=random.randint(1, 3)
        ))
        owners.append(owner)
    db.flush()
    return owners


def create_bookings(db, cleaners, owners):
    """Create one confirmed booking per owner"""
    today = today_in('Europe/Madrid')
    for i, owner in enumerate(owners):
        cleaner = cleaners[i % len(cleaners)]
        prop = owner.properties.first()
        db.add(Booking(
            cleaner_id=cleaner.id,
            owner_id=owner.id,
            property_id=prop.id,
            status=BookingStatus.CONFIRMED,
            service='Regular clean',
            date=today + timedelta(days=15 + i),
            time='14:00',
            hours=3,
            price=cleaner.hourly_rate * 3
        ))
        cleaner.total_bookings += 1
        owner.total_bookings += 1
        cleaner.schedule_version += 1


def main():
    """Main seeding function"""
    print("Dropping existing database...")
    drop_db()

    print("Initializing new database...")
    init_db()

    # Use a single session for all operations
    with get_db() as db:
        print("Creating cleaners...")
        cleaners = create_cleaners(db)

        print("Creating owners and properties...")
        owners = create_owners(db)

        print("Creating bookings...")
        create_bookings(db, cleaners, owners)

        cleaner_token = generate_token({'user_id': cleaners[0].user_id, 'role': 'cleaner',
                                        'cleaner_id': cleaners[0].id})
        owner_token = generate_token({'user_id': owners[0].user_id, 'role': 'owner',
                                      'owner_id': owners[0].id})

    print("\nDatabase seeded successfully!")
    print(f"Created:")
    print(f"- {len(cleaners)} Cleaners with manual blocks")
    print(f"- {len(owners)} Owners with one property each")
    print(f"- {len(owners)} Confirmed bookings")

    print(f"\nCleaner token: {cleaner_token}")
    print(f"Owner token: {owner_token}")


if __name__ == "__main__":
    main()
