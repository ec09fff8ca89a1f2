"""Default trade categories for category-based product consolidation."""

from typing import List

from .models import CategoryAttribute, ProductCategory

UNCATEGORIZED = ProductCategory(
    id="uncategorized",
    name="Uncategorized Products",
    description="Products that could not be categorized automatically",
)


def default_categories() -> List[ProductCategory]:
    return [
        ProductCategory(
            id="food_products",
            name="Food Products",
            description="Edible items including fresh, processed, frozen, and packaged foods",
            examples=["Canned goods", "Frozen meals", "Snacks", "Bakery items", "Dairy products"],
            alternate_names=["Food", "Groceries", "Edibles"],
            attributes=[
                CategoryAttribute(name="main_ingredient", display_name="Main Ingredient", required=True),
                CategoryAttribute(
                    name="preparation_type",
                    display_name="Preparation Type",
                    required=True,
                    allowed_values=["Fresh", "Frozen", "Dried", "Canned", "Processed", "Ready-to-eat"],
                ),
                CategoryAttribute(
                    name="storage_type",
                    display_name="Storage Requirements",
                    required=True,
                    allowed_values=["Ambient", "Refrigerated", "Frozen"],
                ),
                CategoryAttribute(name="shelf_life", display_name="Shelf Life"),
            ],
            keywords=["food", "eat", "edible", "meal", "snack", "grocery", "ingredient", "culinary"],
            hs_code_hints=["02", "03", "04", "07", "08", "16", "19", "20", "21"],
            priority=1,
            metadata={"export_potential": "high", "sustainability_impact": "medium", "local_availability": "high"},
        ),
        ProductCategory(
            id="beverages",
            name="Beverages",
            description="Drinkable liquids including alcoholic and non-alcoholic options",
            examples=["Soft drinks", "Juices", "Coffee", "Tea", "Wine", "Beer", "Spirits"],
            alternate_names=["Drinks", "Liquids", "Refreshments"],
            attributes=[
                CategoryAttribute(
                    name="beverage_type",
                    display_name="Beverage Type",
                    required=True,
                    allowed_values=["Alcoholic", "Non-alcoholic"],
                ),
                CategoryAttribute(
                    name="container_type",
                    display_name="Container Type",
                    required=True,
                    allowed_values=["Bottle", "Can", "Carton", "Pouch", "Bulk"],
                ),
                CategoryAttribute(name="volume", display_name="Volume", required=True),
                CategoryAttribute(name="carbonated", display_name="Carbonated", type="boolean"),
            ],
            keywords=["drink", "beverage", "liquid", "juice", "water", "soda", "wine", "beer", "coffee", "tea"],
            hs_code_hints=["22"],
            priority=2,
            metadata={"export_potential": "high", "sustainability_impact": "medium", "local_availability": "high"},
        ),
        ProductCategory(
            id="ready_to_wear",
            name="Ready-to-Wear",
            description="Clothing and accessories that are manufactured in standard sizes and sold in finished condition",
            examples=["T-shirts", "Jeans", "Dresses", "Coats", "Hats", "Scarves", "Footwear"],
            alternate_names=["Apparel", "Clothing", "Garments", "Fashion"],
            attributes=[
                CategoryAttribute(
                    name="apparel_type",
                    display_name="Apparel Type",
                    required=True,
                    allowed_values=["Tops", "Bottoms", "Outerwear", "Underwear", "Footwear", "Accessories"],
                ),
                CategoryAttribute(
                    name="gender",
                    display_name="Gender",
                    required=True,
                    allowed_values=["Men", "Women", "Unisex", "Children", "Infant"],
                ),
                CategoryAttribute(name="material", display_name="Material", required=True),
                CategoryAttribute(
                    name="season",
                    display_name="Season",
                    allowed_values=["Spring", "Summer", "Fall", "Winter", "All-season"],
                ),
            ],
            keywords=["clothing", "apparel", "wear", "garment", "fashion", "outfit", "dress", "shirt", "pants", "shoes"],
            hs_code_hints=["61", "62", "64", "65"],
            priority=3,
            metadata={"export_potential": "medium", "sustainability_impact": "high", "local_availability": "high"},
        ),
        ProductCategory(
            id="home_goods",
            name="Home Goods",
            description="Products used in the home including furniture, kitchenware, decor, and household essentials",
            examples=["Furniture", "Kitchenware", "Bed linens", "Decorative items", "Cleaning supplies"],
            alternate_names=["Household items", "Home essentials", "Home furnishings", "Domestic goods"],
            attributes=[
                CategoryAttribute(
                    name="product_type",
                    display_name="Product Type",
                    required=True,
                    allowed_values=["Furniture", "Kitchen", "Bathroom", "Decor", "Textiles", "Cleaning", "Garden"],
                ),
                CategoryAttribute(name="material", display_name="Material", required=True),
                CategoryAttribute(
                    name="room",
                    display_name="Room",
                    required=True,
                    allowed_values=["Living room", "Bedroom", "Bathroom", "Kitchen", "Dining room", "Office", "Outdoor"],
                ),
                CategoryAttribute(name="assembly_required", display_name="Assembly Required", type="boolean"),
            ],
            keywords=["home", "house", "furniture", "decor", "kitchen", "housewares", "domestic", "living", "household"],
            hs_code_hints=["39", "44", "69", "70", "94"],
            priority=4,
            metadata={"export_potential": "medium", "sustainability_impact": "medium", "local_availability": "high"},
        ),
        ProductCategory(
            id="non_prescription_health",
            name="Non-Prescription Health",
            description="Over-the-counter health products, supplements, and personal care items",
            examples=["Vitamins", "Supplements", "Bandages", "Personal hygiene", "First aid supplies"],
            alternate_names=["OTC products", "Health and wellness", "Personal care", "Self-care"],
            attributes=[
                CategoryAttribute(
                    name="product_type",
                    display_name="Product Type",
                    required=True,
                    allowed_values=["Vitamins", "Supplements", "First Aid", "Personal Care", "Hygiene", "Pain Relief"],
                ),
                CategoryAttribute(
                    name="format",
                    display_name="Format",
                    required=True,
                    allowed_values=["Tablet", "Capsule", "Liquid", "Cream", "Spray", "Patch"],
                ),
                CategoryAttribute(
                    name="application_method",
                    display_name="Application Method",
                    required=True,
                    allowed_values=["Oral", "Topical", "Nasal", "Ocular", "External"],
                ),
                CategoryAttribute(
                    name="age_group",
                    display_name="Age Group",
                    allowed_values=["Adult", "Children", "Infant", "All ages"],
                ),
            ],
            keywords=["health", "vitamin", "supplement", "medicine", "care", "wellness", "first aid", "hygiene", "otc"],
            hs_code_hints=["30", "33", "34"],
            priority=5,
            metadata={"export_potential": "medium", "sustainability_impact": "low", "local_availability": "medium"},
        ),
    ]
