"""
Recalculates the SDG score of every APPROVED organization.

    python recalculate_sdg_scores.py
"""
from app import create_app
from models import Organization, OrganizationStatus
from sdg_calculator import recalculate_all_sdg_scores


def recalculate():
    app = create_app({'SCHEDULER_ENABLED': False})
    with app.app_context():
        # Read names and old scores up front; a failed organization is rolled back mid-run
        before = {
            org.id: (org.name, org.sdg_score)
            for org in Organization.query.filter_by(status=OrganizationStatus.APPROVED).all()
        }

        if not before:
            print("⚠️  No approved organizations found.")
            return

        print(f"🔄 Recalculating SDG scores for {len(before)} organizations...\n")

        def report(organization_id, score, error):
            name, old_score = before.get(organization_id, (f"Organization {organization_id}", None))
            if error:
                print(f"  ❌ {name}: {error}")
            else:
                print(f"  {name}: {old_score} -> {score}")

        updated = recalculate_all_sdg_scores(report=report)

        print(f"\n✅ Done. Updated: {updated}, Failed: {len(before) - updated}")
        return updated


if __name__ == "__main__":
    recalculate()
