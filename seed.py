import os
from app import create_app
from extensions import db
from models import User, Role


def seed_admin():
    app = create_app({'SCHEDULER_ENABLED': False})
    with app.app_context():
        email = os.getenv('ADMIN_EMAIL', 'admin@campus-food-rescue.local')

        # 1. Check if Admin exists
        if User.query.filter_by(email=email).first():
            print("✅ Admin user already exists. Skipping.")
            return

        # 2. Create Admin if not found
        print("🚀 Creating Admin User...")
        admin = User(
            name='Platform Admin',
            email=email,
            role=Role.ADMIN,
        )
        admin.set_password(os.getenv('ADMIN_PASSWORD', 'password123'))

        db.session.add(admin)
        db.session.commit()
        print("✅ Admin Created Successfully!")


if __name__ == "__main__":
    seed_admin()
