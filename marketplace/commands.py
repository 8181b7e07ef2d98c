import click

from .identity import ROLE_ADMIN, hash_password
from .images import stored_image_filename


def register_commands(app, users, products):
    @app.cli.command("seed-admin")
    def seed_admin():
        """Create the admin account, or promote it if it already exists."""
        email = app.config["ADMIN_EMAIL"].strip().lower()
        password = app.config["ADMIN_PASSWORD"]

        existing = users.find_by_email(email)
        if existing:
            users.set_role(existing["_id"], ROLE_ADMIN)
            click.echo(f"Updated existing user ({email}) to ADMIN")
            return

        users.insert(
            {
                "name": "Admin",
                "email": email,
                "password": hash_password(password),
                "role": ROLE_ADMIN,
                "active": True,
            }
        )
        click.echo(f"Created new admin user: {email}")

    @app.cli.command("migrate-image-paths")
    def migrate_image_paths():
        """Rewrite stored upload paths to bare filenames."""
        click.echo("Scanning products for image path normalization...")
        updated = 0
        for product in products.list_all():
            images = product.get("images")
            if not isinstance(images, list) or not images:
                continue

            new_images = [stored_image_filename(image) for image in images]
            if new_images == images:
                continue

            products.replace_images(product["_id"], new_images)
            updated += 1
            click.echo(f"Updated product {product['_id']}: {images} -> {new_images}")

        click.echo(f"Done. Updated {updated} products.")
